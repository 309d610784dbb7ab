from conftest import NOW
from plenaria_legal.core.constants import ROLE_CUSTOMER
from plenaria_legal.models import Consultation, ConsultationStatus
from plenaria_legal.schemas import ConsultationCreate
from plenaria_legal.services.access_policy import NO_ACCESS, evaluate_access, list_filter
from plenaria_legal.services.consultation_service import ConsultationService


def _open(db, customer, text="Preciso de ajuda"):
    consultation, _ = ConsultationService(db).create(customer, ConsultationCreate(description=text), now=NOW)
    return consultation


def _visible_ids(db, actor, status=None):
    return {c.id for c in db.query(Consultation).filter(*list_filter(actor, status)).all()}


def test_owner_has_full_standing(db, customer):
    consultation = _open(db, customer)
    access = evaluate_access(customer, consultation)
    assert access.visible and access.editable and access.participant and access.contacts_visible


def test_other_customer_sees_nothing(db, customer, make_user):
    consultation = _open(db, customer)
    assert evaluate_access(make_user(ROLE_CUSTOMER), consultation) == NO_ACCESS


def test_open_request_is_visible_to_any_lawyer_without_contacts(db, customer, lawyer):
    consultation = _open(db, customer)
    access = evaluate_access(lawyer, consultation)
    assert access.visible and access.editable
    assert not access.participant
    assert not access.contacts_visible


def test_assigned_lawyer_is_participant(db, customer, lawyer, other_lawyer):
    consultation = _open(db, customer)
    accepted = ConsultationService(db).accept(lawyer, consultation.id, now=NOW)

    assert evaluate_access(lawyer, accepted).participant
    assert evaluate_access(other_lawyer, accepted) == NO_ACCESS


def test_admin_sees_all_but_does_not_chat(db, customer, admin):
    consultation = _open(db, customer)
    access = evaluate_access(admin, consultation)
    assert access.visible and access.contacts_visible
    assert not access.participant


def test_list_filters_by_role(db, customer, make_user, lawyer, other_lawyer, admin):
    second_customer = make_user(ROLE_CUSTOMER)
    open_request = _open(db, customer, "open")
    mine = _open(db, customer, "mine")
    theirs = _open(db, second_customer, "theirs")
    service = ConsultationService(db)
    service.accept(lawyer, mine.id, now=NOW)
    service.accept(other_lawyer, theirs.id, now=NOW)

    assert _visible_ids(db, customer) == {open_request.id, mine.id}
    assert _visible_ids(db, second_customer) == {theirs.id}
    assert _visible_ids(db, lawyer) == {open_request.id, mine.id}
    assert _visible_ids(db, other_lawyer) == {open_request.id, theirs.id}
    assert _visible_ids(db, admin) == {open_request.id, mine.id, theirs.id}

    assert _visible_ids(db, lawyer, ConsultationStatus.REQUESTED) == {open_request.id}
    assert _visible_ids(db, lawyer, ConsultationStatus.ACCEPTED) == {mine.id}
    assert _visible_ids(db, customer, ConsultationStatus.ACCEPTED) == {mine.id}
    assert _visible_ids(db, admin, ConsultationStatus.ACCEPTED) == {mine.id, theirs.id}
