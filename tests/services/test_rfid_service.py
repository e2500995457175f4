"""
Tests for roomkey/services/rfid_service.py
Covers: create_tag, assign / activate / mark_lost / unassign / restore,
        release_for_guest, update_status
"""
import pytest

from roomkey.models.events import EventType
from roomkey.models.ontology import RfidTag, RfidStatus
from roomkey.services.errors import ValidationError, NotFoundError, ConflictError
from roomkey.services.rfid_service import RfidService


@pytest.fixture
def service(db_session, recorder, clock):
    return RfidService(db_session, event_publisher=recorder, clock=clock)


def _tag(db, uid, status=RfidStatus.AVAILABLE, guest_id=None):
    tag = RfidTag(rfid_uid=uid, status=status, guest_id=guest_id)
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return tag


class TestCreateTag:

    def test_create(self, service):
        tag = service.create_tag("A-001")
        assert tag.status == RfidStatus.AVAILABLE
        assert tag.guest_id is None

    def test_duplicate_uid(self, service, sample_tag):
        with pytest.raises(ConflictError):
            service.create_tag("C1")


class TestAssign:

    def test_assign_available(self, service, sample_tag, sample_guest, recorder):
        outcome = service.assign("C1", sample_guest.id)

        assert outcome.changed is True
        assert outcome.previous_status == RfidStatus.AVAILABLE
        assert outcome.tag.status == RfidStatus.ASSIGNED
        assert outcome.tag.guest_id == sample_guest.id
        event = recorder.of(EventType.CREDENTIAL_ASSIGNED)[0]
        assert event.data["old_status"] == "available"
        assert event.data["new_status"] == "assigned"

    def test_second_assign_not_applied(self, service, sample_tag, sample_guest, other_guest):
        service.assign("C1", sample_guest.id)
        outcome = service.assign("C1", other_guest.id)

        assert outcome.changed is False
        assert outcome.tag.guest_id == sample_guest.id

    def test_unknown_uid(self, service, sample_guest):
        with pytest.raises(NotFoundError):
            service.assign("nope", sample_guest.id)

    def test_missing_guest(self, service, sample_tag):
        with pytest.raises(ValidationError):
            service.assign("C1", None)


class TestLifecycle:

    def test_activate_requires_assigned(self, service, sample_tag, sample_guest):
        assert service.activate("C1").changed is False

        service.assign("C1", sample_guest.id)
        outcome = service.activate("C1")
        assert outcome.changed is True
        assert outcome.tag.status == RfidStatus.ACTIVE

    def test_mark_lost_keeps_holder(self, service, sample_tag, sample_guest):
        service.assign("C1", sample_guest.id)
        outcome = service.mark_lost("C1")

        assert outcome.tag.status == RfidStatus.LOST
        assert outcome.tag.guest_id == sample_guest.id
        assert service.mark_lost("C1").changed is False

    def test_unassign_clears_holder(self, service, sample_tag, sample_guest):
        service.assign("C1", sample_guest.id)
        service.mark_lost("C1")

        outcome = service.unassign("C1")
        assert outcome.changed is True
        assert outcome.tag.status == RfidStatus.AVAILABLE
        assert outcome.tag.guest_id is None

    def test_unassign_available_not_applied(self, service, sample_tag):
        assert service.unassign("C1").changed is False

    def test_restore_lost_tag(self, service, sample_tag, sample_guest):
        service.assign("C1", sample_guest.id)
        service.mark_lost("C1")

        outcome = service.restore("C1")
        assert outcome.changed is True
        assert outcome.tag.status == RfidStatus.ASSIGNED
        assert outcome.tag.guest_id == sample_guest.id

    def test_restore_without_holder_not_applied(self, service, db_session):
        _tag(db_session, "L1", status=RfidStatus.LOST)
        assert service.restore("L1").changed is False


class TestReleaseForGuest:

    def test_releases_assigned_and_active_only(self, service, db_session, sample_guest, other_guest):
        _tag(db_session, "T1", RfidStatus.ASSIGNED, sample_guest.id)
        _tag(db_session, "T2", RfidStatus.ACTIVE, sample_guest.id)
        _tag(db_session, "T3", RfidStatus.LOST, sample_guest.id)
        _tag(db_session, "T4", RfidStatus.ACTIVE, other_guest.id)

        released = service.release_for_guest(sample_guest.id)

        assert sorted(t.rfid_uid for t in released) == ["T1", "T2"]
        statuses = {t.rfid_uid: (t.status, t.guest_id) for t in service.get_all()}
        assert statuses["T1"] == (RfidStatus.AVAILABLE, None)
        assert statuses["T2"] == (RfidStatus.AVAILABLE, None)
        assert statuses["T3"] == (RfidStatus.LOST, sample_guest.id)
        assert statuses["T4"] == (RfidStatus.ACTIVE, other_guest.id)


class TestUpdateStatus:

    def test_same_status_is_noop(self, service, sample_tag, recorder):
        outcome = service.update_status("C1", "available")
        assert outcome.changed is False
        assert recorder.events == []

    def test_dispatch_to_lost_and_back(self, service, sample_tag, sample_guest):
        service.assign("C1", sample_guest.id)

        assert service.update_status("C1", "LOST").tag.status == RfidStatus.LOST
        assert service.update_status("C1", "assigned").tag.status == RfidStatus.ASSIGNED
        assert service.update_status("C1", "active").tag.status == RfidStatus.ACTIVE
        outcome = service.update_status("C1", "available")
        assert outcome.tag.status == RfidStatus.AVAILABLE
        assert outcome.tag.guest_id is None

    def test_ineligible_transition_not_applied(self, service, sample_tag):
        outcome = service.update_status("C1", "active")
        assert outcome.changed is False
        assert outcome.tag.status == RfidStatus.AVAILABLE

    def test_unknown_status(self, service, sample_tag):
        with pytest.raises(ValidationError):
            service.update_status("C1", "broken")

    def test_missing_fields(self, service):
        with pytest.raises(ValidationError):
            service.update_status("", "active")
