"""
事件总线单元测试
"""
import pytest
from datetime import datetime

from roomkey.models.events import EventType, RoomCheckedOutData
from roomkey.services.event_bus import EventBus, Event


class TestEventBus:
    """事件总线测试"""

    @pytest.fixture
    def event_bus(self):
        """创建新的事件总线实例"""
        bus = EventBus()
        bus.clear_subscribers()
        bus.clear_history()
        return bus

    @pytest.fixture
    def sample_event(self):
        return Event(
            event_type=EventType.ROOM_CHECKED_OUT,
            timestamp=datetime.now(),
            data=RoomCheckedOutData(room_id=1, room_number="101", guest_id=5, reason="Check-Out").to_dict(),
            source="test"
        )

    def test_singleton(self):
        assert EventBus() is EventBus()

    def test_subscribe_and_publish(self, event_bus, sample_event):
        received = []

        def handler(event):
            received.append(event)

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.publish(sample_event)

        assert len(received) == 1
        assert received[0].data["room_number"] == "101"

    def test_subscribe_is_deduplicated(self, event_bus, sample_event):
        calls = []

        def handler(event):
            calls.append(event)

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.publish(sample_event)
        assert len(calls) == 1

    def test_handler_error_is_isolated(self, event_bus, sample_event):
        """一个处理器异常不影响后续处理器"""
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        def healthy(event):
            calls.append(event)

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, broken)
        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, healthy)
        event_bus.publish(sample_event)

        assert len(calls) == 1

    def test_unsubscribe(self, event_bus, sample_event):
        calls = []

        def handler(event):
            calls.append(event)

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.unsubscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.publish(sample_event)
        assert calls == []

    def test_history_newest_first(self, event_bus, sample_event):
        other = Event(event_type=EventType.ROOM_RESERVED, timestamp=datetime.now(), data={}, source="test")
        event_bus.publish(sample_event)
        event_bus.publish(other)

        history = event_bus.get_history()
        assert history[0].event_type == EventType.ROOM_RESERVED
        assert len(event_bus.get_history(EventType.ROOM_CHECKED_OUT)) == 1

    def test_event_data_serializes_datetimes(self):
        moment = datetime(2025, 3, 1, 16, 0)
        data = RoomCheckedOutData(room_id=1, check_out_time=moment).to_dict()
        assert data["check_out_time"] == "2025-03-01T16:00:00"

    def test_publish_reports_failed_handlers(self, event_bus, sample_event):
        def broken(event):
            raise RuntimeError("boom")

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, broken)
        assert event_bus.publish(sample_event) == 1

    def test_event_ids_are_unique(self, sample_event):
        other = Event(event_type=EventType.ROOM_CHECKED_OUT, timestamp=datetime.now(), data={}, source="test")
        assert sample_event.event_id != other.event_id
