import asyncio
import json

import pytest

from conftest import NOW
from plenaria_legal.core.config import ConsultationConfig
from plenaria_legal.core.exceptions import ValidationError
from plenaria_legal.models import Consultation, ConsultationStatus
from plenaria_legal.schemas import ConsultationCreate
from plenaria_legal.services.consultation_service import ConsultationService
from plenaria_legal.services.live_coordinator import (
    ChannelHub, LiveConnection, LiveSessionCoordinator, consultation_id_from,
)
from plenaria_legal.services.live_sessions import LiveSessionRegistry
from plenaria_legal.services.message_service import MessageStore, to_message_response


class FakeWebSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, payload):
        self.sent.append(payload)


class BrokenWebSocket:
    async def send_json(self, payload):
        raise RuntimeError("socket closed")


def events(connection):
    return [frame["event"] for frame in connection.websocket.sent]


def last(connection, event):
    frames = [frame for frame in connection.websocket.sent if frame["event"] == event]
    return frames[-1]["data"]


def frame(event, data=None):
    return json.dumps({"event": event, "data": data})


@pytest.fixture
def coordinator():
    return LiveSessionCoordinator(
        hub=ChannelHub(),
        registry=LiveSessionRegistry(),
        settings=ConsultationConfig(),
    )


@pytest.fixture
def requested(db, customer):
    consultation, _ = ConsultationService(db).create(customer, ConsultationCreate(description="Preciso de ajuda"), now=NOW)
    return consultation


def connect(user):
    return LiveConnection(FakeWebSocket(), user)


@pytest.mark.asyncio
async def test_live_accept_broadcasts_and_starts_session(coordinator, session_factory, requested, customer, lawyer):
    customer_conn, lawyer_conn = connect(customer), connect(lawyer)

    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    assert last(customer_conn, "joined_consultation") == {"consultation_id": requested.id}

    await coordinator.handle_frame(lawyer_conn, frame("accept_consultation", requested.id), session_factory)

    accepted = last(customer_conn, "consultation_accepted")
    assert accepted["consultation"]["status"] == ConsultationStatus.IN_PROGRESS
    assert accepted["consultation"]["lawyer_id"] == lawyer.id
    assert "consultation_accepted" in events(lawyer_conn)
    assert coordinator.hub.is_member(requested.id, lawyer_conn)
    assert requested.id in coordinator.registry


@pytest.mark.asyncio
async def test_concurrent_live_accepts_have_one_winner(coordinator, session_factory, requested, lawyer, other_lawyer):
    first, second = connect(lawyer), connect(other_lawyer)

    await asyncio.gather(
        coordinator.handle_frame(first, frame("accept_consultation", requested.id), session_factory),
        coordinator.handle_frame(second, frame("accept_consultation", {"consultation_id": requested.id}), session_factory),
    )

    outcomes = sorted(["error" in events(conn) for conn in (first, second)])
    assert outcomes == [False, True]
    loser = first if "error" in events(first) else second
    error = last(loser, "error")
    assert error["code"] == "state_conflict"
    assert error["details"] == {"current_status": ConsultationStatus.IN_PROGRESS}


@pytest.mark.asyncio
async def test_messages_reach_members_in_order(coordinator, session_factory, db, requested, customer, lawyer):
    customer_conn, lawyer_conn = connect(customer), connect(lawyer)
    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.handle_frame(lawyer_conn, frame("accept_consultation", requested.id), session_factory)

    for text in ("um", "dois", "três"):
        await coordinator.handle_frame(
            lawyer_conn, frame("send_message", {"consultation_id": requested.id, "text": text}), session_factory
        )
    await coordinator.handle_frame(
        customer_conn, frame("send_message", {"consultation_id": requested.id, "content": "quatro"}), session_factory
    )

    received = [f["data"]["content"] for f in customer_conn.websocket.sent if f["event"] == "new_message"]
    assert received == ["um", "dois", "três", "quatro"]
    assert events(lawyer_conn).count("message_delivered") == 3
    assert events(customer_conn).count("message_delivered") == 1
    assert coordinator.registry.get(requested.id).last_activity is not None


@pytest.mark.asyncio
async def test_end_consultation_broadcasts_duration(coordinator, session_factory, db, requested, customer, lawyer):
    customer_conn, lawyer_conn = connect(customer), connect(lawyer)
    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.handle_frame(lawyer_conn, frame("accept_consultation", requested.id), session_factory)

    await coordinator.handle_frame(customer_conn, frame("end_consultation", requested.id), session_factory)

    ended = last(lawyer_conn, "session_ended")
    assert ended["consultation_id"] == requested.id
    assert ended["reason"] == "manual"
    assert ended["duration"] == 0
    assert requested.id not in coordinator.registry

    await coordinator.handle_frame(customer_conn, frame("end_consultation", requested.id), session_factory)
    assert last(customer_conn, "error")["code"] == "state_conflict"

    db.expire_all()
    assert db.get(Consultation, requested.id).status == ConsultationStatus.FINISHED


@pytest.mark.asyncio
async def test_live_message_with_non_string_attachments_is_rejected(
    coordinator, session_factory, db, requested, customer, lawyer
):
    customer_conn, lawyer_conn = connect(customer), connect(lawyer)
    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.handle_frame(lawyer_conn, frame("accept_consultation", requested.id), session_factory)

    payload = {"consultation_id": requested.id, "text": "hi", "attachments": [1, {"a": 2}]}
    await coordinator.handle_frame(lawyer_conn, frame("send_message", payload), session_factory)

    error = last(lawyer_conn, "error")
    assert error["code"] == "validation_error"
    assert error["details"] == {"fields": ["attachments"]}
    assert "new_message" not in events(customer_conn)
    assert "message_delivered" not in events(lawyer_conn)

    store = MessageStore(db)
    assert store.count_for(requested.id) == 1
    assert [to_message_response(m).content for m in store.list_for(requested.id)] == ["Preciso de ajuda"]

    await coordinator.handle_frame(
        lawyer_conn, frame("send_message", {"consultation_id": requested.id, "text": "hi", "attachments": ["doc-1"]}),
        session_factory,
    )
    assert last(customer_conn, "new_message")["attachments"] == ["doc-1"]


@pytest.mark.asyncio
async def test_lock_map_is_empty_after_session_completes(coordinator, session_factory, requested, customer, lawyer):
    customer_conn, lawyer_conn = connect(customer), connect(lawyer)
    await coordinator.handle_frame(lawyer_conn, frame("accept_consultation", requested.id), session_factory)
    await coordinator.handle_frame(
        customer_conn, frame("send_message", {"consultation_id": requested.id, "text": "oi"}), session_factory
    )
    await coordinator.handle_frame(customer_conn, frame("end_consultation", requested.id), session_factory)

    assert "error" not in events(customer_conn)
    assert coordinator._locks == {}


@pytest.mark.asyncio
async def test_lock_map_does_not_grow_with_unknown_consultations(coordinator, session_factory, lawyer):
    conn = connect(lawyer)
    for missing_id in range(10_000, 10_050):
        await coordinator.handle_frame(conn, frame("accept_consultation", missing_id), session_factory)

    assert events(conn) == ["error"] * 50
    assert {f["data"]["code"] for f in conn.websocket.sent} == {"not_found"}
    assert coordinator._locks == {}


@pytest.mark.asyncio
async def test_lock_map_is_empty_after_contended_commands(coordinator, session_factory, requested, lawyer, other_lawyer):
    first, second = connect(lawyer), connect(other_lawyer)
    await asyncio.gather(
        coordinator.handle_frame(first, frame("accept_consultation", requested.id), session_factory),
        coordinator.handle_frame(second, frame("accept_consultation", requested.id), session_factory),
    )
    assert coordinator._locks == {}

@pytest.mark.asyncio
async def test_join_requires_standing(coordinator, session_factory, requested, lawyer, make_user):
    outsider = connect(lawyer)
    await coordinator.handle_frame(outsider, frame("join_consultation", requested.id), session_factory)

    assert events(outsider) == ["error"]
    assert not coordinator.hub.is_member(requested.id, outsider)


@pytest.mark.asyncio
async def test_typing_is_relayed_only_from_members(coordinator, session_factory, requested, customer, lawyer, admin):
    customer_conn, admin_conn, lawyer_conn = connect(customer), connect(admin), connect(lawyer)
    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.handle_frame(admin_conn, frame("join_consultation", requested.id), session_factory)

    await coordinator.handle_frame(lawyer_conn, frame("typing", {"consultation_id": requested.id}), session_factory)
    assert "user_typing" not in events(admin_conn)

    await coordinator.handle_frame(customer_conn, frame("typing", {"consultation_id": requested.id}), session_factory)
    await coordinator.handle_frame(customer_conn, frame("stopped_typing", {"consultation_id": requested.id}), session_factory)
    assert last(admin_conn, "user_typing")["user_id"] == customer.id
    assert "user_stopped_typing" in events(admin_conn)
    assert "user_typing" not in events(customer_conn)


@pytest.mark.asyncio
async def test_leave_and_disconnect_notify_members(coordinator, session_factory, requested, customer, admin):
    customer_conn, admin_conn = connect(customer), connect(admin)
    await coordinator.handle_frame(customer_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.handle_frame(admin_conn, frame("join_consultation", requested.id), session_factory)
    assert last(customer_conn, "user_joined")["user_id"] == admin.id

    await coordinator.handle_frame(admin_conn, frame("leave_consultation", requested.id), session_factory)
    assert last(customer_conn, "user_left")["email"] == admin.email

    await coordinator.handle_frame(admin_conn, frame("join_consultation", requested.id), session_factory)
    await coordinator.disconnect(customer_conn)
    assert last(admin_conn, "user_left")["user_id"] == customer.id
    assert coordinator.hub.members(requested.id) == [admin_conn]


@pytest.mark.asyncio
async def test_bad_frames_produce_error_events(coordinator, session_factory, customer):
    conn = connect(customer)
    await coordinator.handle_frame(conn, "not json", session_factory)
    await coordinator.handle_frame(conn, json.dumps(["event"]), session_factory)
    await coordinator.handle_frame(conn, frame("dance", 1), session_factory)
    await coordinator.handle_frame(conn, frame("join_consultation", {"nope": 1}), session_factory)
    await coordinator.handle_frame(conn, frame("join_consultation", 999), session_factory)

    errors = [f["data"] for f in conn.websocket.sent]
    assert [e["code"] for e in errors] == [
        "validation_error", "validation_error", "validation_error", "validation_error", "not_found",
    ]


@pytest.mark.asyncio
async def test_publish_drops_unreachable_connections(customer, admin):
    hub = ChannelHub()
    healthy = connect(customer)
    broken = LiveConnection(BrokenWebSocket(), admin)
    hub.join(1, healthy)
    hub.join(1, broken)

    delivered = await hub.publish(1, "user_typing", {"user_id": 1})

    assert delivered == 1
    assert hub.members(1) == [healthy]


def test_consultation_id_parsing():
    assert consultation_id_from(5) == 5
    assert consultation_id_from("12") == 12
    assert consultation_id_from({"consultation_id": 3}) == 3
    for bad in (None, True, "abc", {"id": 3}):
        with pytest.raises(ValidationError):
            consultation_id_from(bad)


def test_shutdown_clears_registry(coordinator):
    coordinator.registry.start(1, now=NOW)
    coordinator.shutdown()
    assert len(coordinator.registry) == 0
