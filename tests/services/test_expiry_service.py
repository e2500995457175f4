"""
Tests for roomkey/services/expiry_service.py
Covers: warning pass (once per stay), expiry pass (auto check-out), no-show sweep
"""
import pytest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from roomkey.models.events import EventType
from roomkey.models.ontology import Room, RoomStatus, RfidTag, RfidStatus, StayRecord, CheckOutReason
from roomkey.services.errors import ConflictError
from roomkey.services.expiry_service import ExpiryService
from roomkey.services.registration_service import RegistrationService
from roomkey.services.verification_service import VerificationService


@pytest.fixture
def service(db_session, recorder, clock):
    return ExpiryService(db_session, event_publisher=recorder, clock=clock)


@pytest.fixture
def registered(db_session, recorder, clock, sample_guest, sample_room, sample_tag):
    return RegistrationService(db_session, event_publisher=recorder, clock=clock).register(
        sample_guest.id, "101", sample_tag.id, hours_stay=2
    )


@pytest.fixture
def checked_in(db_session, recorder, clock, registered):
    return VerificationService(db_session, event_publisher=recorder, clock=clock).verify("C1")


class TestWarningPass:

    def test_warning_inside_window(self, service, checked_in, clock, recorder):
        clock.now = checked_in.room.check_out - timedelta(minutes=8)

        assert service.run_warning_pass() == ["101"]
        event = recorder.of(EventType.STAY_CHECKOUT_WARNING)[0]
        assert event.data["minutes_left"] == 8
        assert event.data["guest_id"] == checked_in.room.guest_id

    def test_warning_fires_once(self, service, checked_in, clock, recorder):
        clock.now = checked_in.room.check_out - timedelta(minutes=9)
        service.run_warning_pass()
        clock.advance(minutes=1)

        assert service.run_warning_pass() == []
        assert len(recorder.of(EventType.STAY_CHECKOUT_WARNING)) == 1

    def test_outside_window(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out - timedelta(minutes=11)
        assert service.run_warning_pass() == []

    def test_window_boundary_included(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out - timedelta(minutes=10)
        assert service.run_warning_pass() == ["101"]

    def test_expired_room_not_warned(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out
        assert service.run_warning_pass() == []

    def test_reserved_room_not_warned(self, service, registered):
        assert service.run_warning_pass() == []


class TestExpiryPass:

    def test_auto_check_out(self, service, db_session, checked_in, clock, recorder):
        clock.now = checked_in.room.check_out + timedelta(seconds=30)

        assert service.run_expiry_pass() == ["101"]

        room = db_session.query(Room).filter(Room.room_number == "101").first()
        tag = db_session.query(RfidTag).filter(RfidTag.rfid_uid == "C1").first()
        stay = db_session.query(StayRecord).first()
        assert room.status == RoomStatus.AVAILABLE
        assert room.guest_id is None
        assert room.warning_sent is False
        assert tag.status == RfidStatus.AVAILABLE
        assert tag.guest_id is None
        assert stay.check_out == clock.now
        assert stay.check_out_reason == CheckOutReason.AUTO.value
        assert stay.was_early_checkout is False
        assert recorder.of(EventType.ROOM_CHECKED_OUT)[0].data["reason"] == CheckOutReason.AUTO.value

    def test_at_exact_check_out(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out
        assert service.run_expiry_pass() == ["101"]

    def test_not_yet_expired(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out - timedelta(seconds=1)
        assert service.run_expiry_pass() == []

    def test_second_run_does_nothing(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out
        service.run_expiry_pass()
        assert service.run_expiry_pass() == []

    def test_failure_on_one_room_continues(self, service, checked_in, clock):
        clock.now = checked_in.room.check_out
        with patch.object(service.checkout, "check_out", side_effect=ConflictError("boom")):
            assert service.run_expiry_pass() == []
        # 下一轮重试
        assert service.run_expiry_pass() == ["101"]


class TestInterruptedCheckOut:

    @pytest.fixture
    def store_error(self):
        return OperationalError("UPDATE stay_records", {}, Exception("database is locked"))

    def test_next_tick_finishes_cascade(self, service, db_session, checked_in, clock, store_error,
                                        sample_guest, sample_tag, recorder):
        clock.now = checked_in.room.check_out + timedelta(hours=1)
        with patch.object(service.checkout.stays, "close_open_for", side_effect=store_error):
            assert service.run_expiry_pass() == []
        room = db_session.query(Room).filter(Room.room_number == "101").first()
        assert room.status == RoomStatus.AVAILABLE

        assert service.run_expiry_pass() == ["101"]

        stay = db_session.query(StayRecord).filter(StayRecord.id == checked_in.stay.id).first()
        assert stay.check_out is not None
        assert stay.check_out_reason == CheckOutReason.AUTO.value
        tag = db_session.query(RfidTag).filter(RfidTag.rfid_uid == "C1").first()
        assert tag.status == RfidStatus.AVAILABLE
        assert tag.guest_id is None

        again = RegistrationService(db_session, event_publisher=recorder, clock=clock).register(
            sample_guest.id, "101", sample_tag.id, hours_stay=2
        )
        assert again.idempotent is False
        assert again.room.status == RoomStatus.RESERVED
        assert again.room.guest_id == sample_guest.id
        assert again.stay.id != checked_in.stay.id

    def test_registration_finishes_cascade_before_next_tick(self, service, db_session, checked_in, clock,
                                                            store_error, sample_guest, sample_tag, recorder):
        clock.now = checked_in.room.check_out + timedelta(hours=1)
        with patch.object(service.checkout.rfids, "release_for_guest", side_effect=store_error):
            assert service.run_expiry_pass() == []
        tag = db_session.query(RfidTag).filter(RfidTag.rfid_uid == "C1").first()
        assert tag.status == RfidStatus.ACTIVE

        result = RegistrationService(db_session, event_publisher=recorder, clock=clock).register(
            sample_guest.id, "101", sample_tag.id, hours_stay=2
        )

        assert result.idempotent is False
        assert result.room.status == RoomStatus.RESERVED
        assert result.tag.status == RfidStatus.ASSIGNED
        open_stays = db_session.query(StayRecord).filter(StayRecord.check_out.is_(None)).all()
        assert [s.id for s in open_stays] == [result.stay.id]


class TestNoShowSweep:

    def test_releases_reserved_room_after_grace(self, service, db_session, registered, clock, recorder):
        clock.advance(minutes=61)

        assert service.run_no_show_sweep() == ["101"]

        room = db_session.query(Room).filter(Room.room_number == "101").first()
        stay = db_session.query(StayRecord).first()
        tag = db_session.query(RfidTag).filter(RfidTag.rfid_uid == "C1").first()
        assert room.status == RoomStatus.AVAILABLE
        assert stay.check_out_reason == CheckOutReason.NO_SHOW.value
        assert tag.status == RfidStatus.AVAILABLE
        assert recorder.of(EventType.ROOM_NO_SHOW)

    def test_within_grace(self, service, registered, clock):
        clock.advance(minutes=30)
        assert service.run_no_show_sweep() == []

    def test_uses_expected_check_in(self, db_session, recorder, clock, sample_guest, sample_room, sample_tag):
        arrival = clock.now + timedelta(hours=5)
        RegistrationService(db_session, event_publisher=recorder, clock=clock).register(
            sample_guest.id, "101", sample_tag.id,
            check_in=arrival, check_out=arrival + timedelta(hours=2)
        )
        service = ExpiryService(db_session, event_publisher=recorder, clock=clock)

        clock.advance(hours=2)
        assert service.run_no_show_sweep() == []
        clock.now = arrival + timedelta(minutes=61)
        assert service.run_no_show_sweep() == ["101"]

    def test_occupied_room_untouched(self, service, checked_in, clock):
        clock.advance(hours=1, minutes=30)
        assert service.run_no_show_sweep() == []
