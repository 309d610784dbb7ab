from datetime import timedelta

import pytest

from conftest import NOW
from plenaria_legal.core.exceptions import AuthorizationError, StateConflictError, ValidationError
from plenaria_legal.models import Consultation, Message
from plenaria_legal.schemas import ConsultationCreate, MessageCreate
from plenaria_legal.services.consultation_service import ConsultationService
from plenaria_legal.services.message_service import MessageStore, normalize_text, to_message_response


@pytest.fixture
def accepted(db, customer, lawyer):
    service = ConsultationService(db)
    consultation, _ = service.create(customer, ConsultationCreate(description="Preciso de ajuda"), now=NOW)
    return service.accept(lawyer, consultation.id, now=NOW)


def test_whitespace_only_text_is_rejected_without_persisting(db, accepted, lawyer):
    before = db.query(Message).count()
    with pytest.raises(ValidationError):
        ConsultationService(db).send_message(lawyer, accepted.id, "   \n\t", now=NOW)
    assert db.query(Message).count() == before


def test_send_appends_one_message_and_bumps_activity(db, accepted, lawyer):
    later = NOW + timedelta(minutes=5)
    message = ConsultationService(db).send_message(
        lawyer, accepted.id, " Olá, como posso ajudar? ", ["doc-1"], now=later
    )

    assert message.text == "Olá, como posso ajudar?"
    assert message.attachments == ["doc-1"]
    assert message.delivered_at == later
    assert MessageStore(db).count_for(accepted.id) == 2
    db.expire_all()
    assert db.get(Consultation, accepted.id).last_activity_at == later


def test_requested_consultation_does_not_accept_messages(db, customer):
    consultation, _ = ConsultationService(db).create(customer, ConsultationCreate(description="x"), now=NOW)
    with pytest.raises(StateConflictError) as exc_info:
        ConsultationService(db).send_message(customer, consultation.id, "hello", now=NOW)
    assert exc_info.value.current_status == "REQUESTED"


def test_finished_consultation_does_not_accept_messages(db, customer, lawyer):
    service = ConsultationService(db)
    consultation, _ = service.create(customer, ConsultationCreate(description="x"), now=NOW)
    service.accept(lawyer, consultation.id, now=NOW, live=True)
    service.end_session(customer, consultation.id, now=NOW + timedelta(minutes=1))

    with pytest.raises(StateConflictError):
        service.send_message(customer, consultation.id, "still there?", now=NOW)
    assert MessageStore(db).count_for(consultation.id) == 1


def test_only_participants_send(db, accepted, other_lawyer, admin):
    service = ConsultationService(db)
    with pytest.raises(AuthorizationError):
        service.send_message(other_lawyer, accepted.id, "hi", now=NOW)
    with pytest.raises(AuthorizationError):
        service.send_message(admin, accepted.id, "hi", now=NOW)


def test_history_is_ordered_and_restricted(db, accepted, customer, lawyer, other_lawyer, admin):
    service = ConsultationService(db)
    service.send_message(lawyer, accepted.id, "first reply", now=NOW + timedelta(minutes=1))
    service.send_message(customer, accepted.id, "second", now=NOW + timedelta(minutes=2))

    texts = [m.text for m in service.list_messages(customer, accepted.id)]
    assert texts == ["Preciso de ajuda", "first reply", "second"]
    assert len(service.list_messages(admin, accepted.id)) == 3

    with pytest.raises(AuthorizationError):
        service.list_messages(other_lawyer, accepted.id)


def test_open_request_history_hidden_from_unassigned_lawyers(db, customer, lawyer):
    consultation, _ = ConsultationService(db).create(customer, ConsultationCreate(description="x"), now=NOW)
    with pytest.raises(AuthorizationError):
        ConsultationService(db).list_messages(lawyer, consultation.id)


def test_message_representation(db, accepted, lawyer):
    message = ConsultationService(db).send_message(lawyer, accepted.id, "Oi", now=NOW)
    response = to_message_response(message)

    assert response.content == "Oi"
    assert response.sender.id == lawyer.id
    assert response.sender.role == "lawyer"
    assert response.is_read is False


def test_normalize_text():
    assert normalize_text("  a b  ") == "a b"
    with pytest.raises(ValidationError):
        normalize_text(None)


def test_non_string_attachments_are_rejected_without_persisting(db, accepted):
    store = MessageStore(db)
    later = NOW + timedelta(minutes=1)
    with pytest.raises(ValidationError) as exc:
        store.append(accepted.id, accepted.lawyer_id, "Oi", [1, {"a": 2}], now=later)

    assert exc.value.details == {"field": "attachments"}
    assert store.count_for(accepted.id) == 1
    db.expire_all()
    assert db.get(Consultation, accepted.id).last_activity_at != later


def test_message_body_uses_first_non_blank_field():
    assert MessageCreate(text="  ", content="hi").body == "hi"
    assert MessageCreate(text=" a ", content="b").body == "a"
    assert MessageCreate(content="  ").body == ""
