from .attendance_record import AttendanceRecord, AttendanceType, PunctualityStatus
from .company import CompanyProfile
from .employee import Employee
from .location import ServiceLocation
from .payment_transaction import PaymentTransaction
from .shift import Shift
