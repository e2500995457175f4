"""
Tests for roomkey/services/registration_service.py
Covers: resolve_stay_hours, register (new triple, idempotent repeat,
        resumed half-finished attempt, credential resolution errors)
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from roomkey.models.ontology import (
    Room, RoomStatus, RfidTag, RfidStatus, StayRecord, StayEventIndicator
)
from roomkey.services.errors import ValidationError, NotFoundError, ConflictError
from roomkey.services.registration_service import RegistrationService, resolve_stay_hours


@pytest.fixture
def service(db_session, recorder, clock):
    return RegistrationService(db_session, event_publisher=recorder, clock=clock)


class TestResolveStayHours:

    def test_direct_hours_rounded(self):
        assert resolve_stay_hours("1.999") == Decimal("2.00")

    def test_from_window(self):
        start = datetime(2025, 3, 1, 14, 0)
        assert resolve_stay_hours(check_in=start, check_out=start + timedelta(minutes=90)) == Decimal("1.50")

    def test_end_before_start(self):
        start = datetime(2025, 3, 1, 14, 0)
        with pytest.raises(ValidationError):
            resolve_stay_hours(check_in=start, check_out=start)

    def test_non_positive_hours(self):
        with pytest.raises(ValidationError):
            resolve_stay_hours(-2)

    def test_nothing_supplied(self):
        with pytest.raises(ValidationError):
            resolve_stay_hours()


class TestRegister:

    def test_new_registration(self, service, db_session, sample_guest, sample_room, sample_tag):
        result = service.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)

        assert result.idempotent is False
        assert result.room.status == RoomStatus.RESERVED
        assert result.room.guest_id == sample_guest.id
        assert result.tag.status == RfidStatus.ASSIGNED
        assert result.tag.guest_id == sample_guest.id

        stays = db_session.query(StayRecord).all()
        assert len(stays) == 1
        stay = stays[0]
        assert stay.id == result.stay.id
        assert stay.check_in is None and stay.check_out is None
        assert stay.rfid_id == sample_tag.id
        assert stay.hours_stay == Decimal("2")
        assert stay.event_indicator == StayEventIndicator.REGISTERED
        assert "password" not in stay.guest_snapshot

    def test_repeat_registration_is_idempotent(self, service, db_session, sample_guest, sample_room, sample_tag):
        first = service.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)
        second = service.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)

        assert second.idempotent is True
        assert second.stay.id == first.stay.id
        assert second.room.id == first.room.id
        assert second.tag.id == first.tag.id
        assert db_session.query(StayRecord).filter(StayRecord.check_out.is_(None)).count() == 1

    def test_hours_from_window(self, service, sample_guest, sample_room, sample_tag, clock):
        result = service.register(
            sample_guest.id, "101", sample_tag.id,
            check_in=clock.now, check_out=clock.now + timedelta(hours=3)
        )
        assert result.room.hours_stay == Decimal("3")
        assert result.room.expected_check_in == clock.now

    def test_resumes_half_finished_attempt(self, service, db_session, sample_guest, sample_room, sample_tag, clock):
        # 上一次登记只完成了预留房间
        sample_room.status = RoomStatus.RESERVED
        sample_room.guest_id = sample_guest.id
        sample_room.hours_stay = Decimal("2")
        sample_room.registered_at = clock.now
        db_session.commit()

        result = service.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)

        assert result.idempotent is False
        assert result.room.id == sample_room.id
        assert result.tag.status == RfidStatus.ASSIGNED

    def test_credential_already_held_by_same_guest(self, service, db_session, sample_guest, sample_room, sample_tag):
        sample_tag.status = RfidStatus.ASSIGNED
        sample_tag.guest_id = sample_guest.id
        db_session.commit()

        result = service.register(sample_guest.id, "101", sample_tag.id, hours_stay=1)
        assert result.tag.id == sample_tag.id
        assert result.tag.guest_id == sample_guest.id

    def test_credential_held_by_other_guest(self, service, db_session, sample_guest, other_guest,
                                            sample_room, sample_tag):
        sample_tag.status = RfidStatus.ASSIGNED
        sample_tag.guest_id = other_guest.id
        db_session.commit()

        with pytest.raises(ConflictError):
            service.register(sample_guest.id, "101", sample_tag.id, hours_stay=1)
        # 房间保持 reserved，等待重试
        db_session.refresh(sample_room)
        assert sample_room.status == RoomStatus.RESERVED
        assert db_session.query(StayRecord).count() == 0

    def test_lost_credential_rejected(self, service, db_session, sample_guest, sample_room, sample_tag):
        sample_tag.status = RfidStatus.LOST
        db_session.commit()
        with pytest.raises(ConflictError):
            service.register(sample_guest.id, "101", sample_tag.id, hours_stay=1)

    def test_unknown_credential(self, service, sample_guest, sample_room):
        with pytest.raises(NotFoundError):
            service.register(sample_guest.id, "101", 999, hours_stay=1)

    def test_unknown_room(self, service, sample_guest, sample_tag):
        with pytest.raises(NotFoundError):
            service.register(sample_guest.id, "999", sample_tag.id, hours_stay=1)

    def test_room_held_by_other_guest(self, service, db_session, sample_guest, other_guest, sample_room, sample_tag):
        sample_room.status = RoomStatus.RESERVED
        sample_room.guest_id = other_guest.id
        db_session.commit()
        with pytest.raises(ConflictError):
            service.register(sample_guest.id, "101", sample_tag.id, hours_stay=1)

    def test_unknown_guest(self, service, sample_room, sample_tag):
        with pytest.raises(NotFoundError):
            service.register(4242, "101", sample_tag.id, hours_stay=1)

    def test_missing_fields(self, service, sample_guest):
        with pytest.raises(ValidationError):
            service.register(sample_guest.id, None, 1, hours_stay=1)

    def test_bad_time_range(self, service, sample_guest, sample_room, sample_tag, clock):
        with pytest.raises(ValidationError):
            service.register(
                sample_guest.id, "101", sample_tag.id,
                check_in=clock.now, check_out=clock.now - timedelta(hours=1)
            )
        assert sample_room.status == RoomStatus.AVAILABLE


class TestConcurrentRegistration:
    """第二个请求在第一个请求写入入住记录之前已通过重复检查"""

    def test_interleaved_registration_creates_one_stay(self, db_session, session_factory, recorder, clock,
                                                       monkeypatch, sample_guest, sample_room, sample_tag):
        first = RegistrationService(db_session, event_publisher=recorder, clock=clock)
        other_session = session_factory()
        try:
            second = RegistrationService(other_session, event_publisher=recorder, clock=clock)
            monkeypatch.setattr(second, "_existing_triple", lambda guest_id: None)

            result_a = first.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)
            result_b = second.register(sample_guest.id, "101", sample_tag.id, hours_stay=2)

            assert result_b.stay.id == result_a.stay.id
            assert result_b.idempotent is True
        finally:
            other_session.close()

        assert db_session.query(StayRecord).count() == 1
