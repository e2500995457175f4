# Stay / Credential Services
from roomkey.services.room_service import RoomService
from roomkey.services.rfid_service import RfidService
from roomkey.services.stay_record_service import StayRecordService
from roomkey.services.checkout_service import CheckOutService
from roomkey.services.registration_service import RegistrationService
from roomkey.services.verification_service import VerificationService
from roomkey.services.expiry_service import ExpiryService
from roomkey.services.notification_service import NotificationService

__all__ = [
    'RoomService', 'RfidService', 'StayRecordService',
    'CheckOutService', 'RegistrationService', 'VerificationService',
    'ExpiryService', 'NotificationService'
]
