# Ontology Models
from roomkey.models.ontology import (
    Guest, Admin, Room, RfidTag, StayRecord, Notification,
    RoomStatus, RfidStatus, StayEventIndicator, CheckOutReason, NotificationType
)

__all__ = [
    'Guest', 'Admin', 'Room', 'RfidTag', 'StayRecord', 'Notification',
    'RoomStatus', 'RfidStatus', 'StayEventIndicator', 'CheckOutReason', 'NotificationType'
]
