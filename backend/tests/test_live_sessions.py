from datetime import timedelta

from conftest import NOW
from plenaria_legal.services.live_sessions import LiveSessionRegistry


def test_start_sets_sixty_minute_ceiling():
    registry = LiveSessionRegistry()
    session = registry.start(7, now=NOW)

    assert session.start_time == NOW
    assert session.max_end_time == NOW + timedelta(minutes=60)
    assert session.last_activity is None
    assert 7 in registry and len(registry) == 1


def test_touch_updates_last_activity_only_for_tracked_sessions():
    registry = LiveSessionRegistry()
    registry.start(1, now=NOW)

    touched = registry.touch(1, now=NOW + timedelta(minutes=3))
    assert touched.last_activity == NOW + timedelta(minutes=3)
    assert registry.get(1).idle_for(NOW + timedelta(minutes=5)) == timedelta(minutes=2)
    assert registry.touch(2, now=NOW) is None
    assert 2 not in registry


def test_sessions_are_never_expired_automatically():
    registry = LiveSessionRegistry(max_session_minutes=1, idle_timeout_minutes=1, auto_expiry_enabled=True)
    session = registry.start(3, now=NOW)

    assert session.is_past_ceiling(NOW + timedelta(hours=5))
    assert session.remaining(NOW + timedelta(hours=5)) == timedelta(0)
    # Still tracked until an explicit end
    assert registry.get(3) is session


def test_end_and_clear():
    registry = LiveSessionRegistry()
    registry.start(1, now=NOW)
    registry.start(2, now=NOW)

    assert registry.end(1).consultation_id == 1
    assert registry.end(1) is None
    assert registry.clear() == 1
    assert len(registry) == 0


def test_restart_replaces_entry():
    registry = LiveSessionRegistry()
    registry.start(1, now=NOW)
    later = NOW + timedelta(minutes=10)
    registry.start(1, now=later)
    assert registry.get(1).start_time == later
    assert registry.get(1).to_dict()["max_end_time"] == (later + timedelta(minutes=60)).isoformat()
