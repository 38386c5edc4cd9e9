# Import all models here for easier imports elsewhere
from .company import Company, Location
from .customer import Customer, Pet
from .user import User
from .catalog import ResourceType, Resource, ServiceCategory, ServiceItem, ServiceItemResource
from .availability import BusinessHours, StaffSchedule, StaffBreak, TimeOff
from .appointment import Appointment
from .reservation import ResourceReservation, BookingHold, HoldEntry, SchedulingLock
from .audit import AuditLog
