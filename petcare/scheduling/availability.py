"""Availability Index.

Answers whether a set of staff and resource-type requirements can all be
satisfied at a location without overlapping active commitments: appointments
in a non-terminal status and booking holds that have not expired. Every query
here is a read; nothing is written.
"""
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from petcare import db
from petcare.models.appointment import Appointment, ACTIVE_STATUSES
from petcare.models.availability import BusinessHours, StaffSchedule, TimeOff
from petcare.models.catalog import Resource
from petcare.models.company import Location
from petcare.models.reservation import BookingHold, HoldEntry, ResourceReservation
from petcare.scheduling.errors import ValidationFailed

KIND_STAFF = 'staff'
KIND_RESOURCE_TYPE = 'resource_type'

REASON_OVERLAPPING_APPOINTMENT = 'overlapping_appointment'
REASON_OVERLAPPING_HOLD = 'overlapping_hold'
REASON_OVERLAPPING_REQUIREMENT = 'overlapping_requirement'
REASON_STAFF_TIME_OFF = 'staff_time_off'
REASON_OUTSIDE_WORKING_HOURS = 'outside_working_hours'
REASON_NO_RESOURCES = 'no_resources'
REASON_INSUFFICIENT_CAPACITY = 'insufficient_capacity'


def overlaps(a_start, a_end, b_start, b_end):
    """Half-open intersection of [a_start, a_end) and [b_start, b_end)"""
    return a_start < b_end and b_start < a_end


def _iso(value):
    return value.isoformat() if value else None


def _zone(name):
    if not name or name == 'UTC':
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        current_app.logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return timezone.utc


class TimeWindow(object):
    """A [start, end) interval of naive UTC datetimes"""

    def __init__(self, start, end):
        if start is None or end is None:
            raise ValidationFailed('Start and end times are required')
        if end <= start:
            raise ValidationFailed(
                'End time must be after start time',
                details={'start': _iso(start), 'end': _iso(end)},
            )
        self.start = start
        self.end = end

    def expand(self, before_minutes=0, after_minutes=0):
        return TimeWindow(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )

    def overlaps(self, other):
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other):
        return self.start <= other.start and other.end <= self.end

    @property
    def duration(self):
        return self.end - self.start

    def to_dict(self):
        return {'start': _iso(self.start), 'end': _iso(self.end)}

    def __eq__(self, other):
        return isinstance(other, TimeWindow) and (self.start, self.end) == (other.start, other.end)

    def __hash__(self):
        return hash((self.start, self.end))

    def __repr__(self):
        return f'<TimeWindow {self.start} - {self.end}>'


class Requirement(object):
    """One thing a booking needs for a sub-window: an exact staff member or N resources of a type"""

    def __init__(self, window, staff_id=None, resource_type_id=None, quantity=1, buffer_before=0, buffer_after=0):
        if (staff_id is None) == (resource_type_id is None):
            raise ValidationFailed('A requirement needs exactly one of staff_id or resource_type_id')
        if quantity < 1:
            raise ValidationFailed('Requirement quantity must be at least 1')
        if buffer_before < 0 or buffer_after < 0:
            raise ValidationFailed('Buffer minutes cannot be negative')
        self.window = window
        self.staff_id = staff_id
        self.resource_type_id = resource_type_id
        self.quantity = quantity
        self.buffer_before = buffer_before
        self.buffer_after = buffer_after

    @property
    def kind(self):
        return KIND_STAFF if self.staff_id is not None else KIND_RESOURCE_TYPE

    @property
    def blocked_window(self):
        return self.window.expand(self.buffer_before, self.buffer_after)

    def lock_key(self, company_id, location_id):
        target = self.staff_id if self.staff_id is not None else self.resource_type_id
        return f'{company_id}:{location_id}:{self.kind}:{target}'

    def to_dict(self):
        data = {
            'kind': self.kind,
            'start': _iso(self.window.start),
            'end': _iso(self.window.end),
            'buffer_before': self.buffer_before,
            'buffer_after': self.buffer_after,
        }
        if self.staff_id is not None:
            data['staff_id'] = self.staff_id
        else:
            data['resource_type_id'] = self.resource_type_id
            data['quantity'] = self.quantity
        return data

    def __repr__(self):
        return f'<Requirement {self.kind} {self.staff_id or self.resource_type_id} {self.window.start}-{self.window.end}>'


class Conflict(object):
    def __init__(self, index, requirement, reason, appointment_ids=(), hold_ids=(), capacity=None, used=None):
        self.index = index
        self.requirement = requirement
        self.reason = reason
        self.appointment_ids = list(appointment_ids)
        self.hold_ids = list(hold_ids)
        self.capacity = capacity
        self.used = used

    @property
    def kind(self):
        return self.requirement.kind

    def to_dict(self):
        data = {
            'index': self.index,
            'kind': self.kind,
            'reason': self.reason,
            'start': _iso(self.requirement.window.start),
            'end': _iso(self.requirement.window.end),
            'appointment_ids': self.appointment_ids,
            'hold_ids': self.hold_ids,
        }
        if self.requirement.staff_id is not None:
            data['staff_id'] = self.requirement.staff_id
        else:
            data['resource_type_id'] = self.requirement.resource_type_id
            data['capacity'] = self.capacity
            data['used'] = self.used
            data['requested'] = self.requirement.quantity
        return data

    def __repr__(self):
        return f'<Conflict #{self.index} {self.kind} {self.reason}>'


class AvailabilityResult(object):
    def __init__(self, conflicts):
        self.conflicts = list(conflicts)

    @property
    def available(self):
        return not self.conflicts

    def to_dict(self):
        return {
            'available': self.available,
            'conflicts': [conflict.to_dict() for conflict in self.conflicts],
        }

    def __repr__(self):
        return f'<AvailabilityResult available={self.available} conflicts={len(self.conflicts)}>'


class AvailabilityIndex(object):
    def __init__(self, clock):
        self.clock = clock

    def check(self, company_id, location_id, window, requirements, exclude_appointment_id=None,
              exclude_hold_id=None, species=None):
        """Check every requirement in order and report all that cannot be met.

        Earlier requirements of the same request count as claims against
        later ones, so a request can never conflict with itself unnoticed.
        """
        now = self.clock()
        conflicts = []

        for index, requirement in enumerate(requirements):
            if not window.contains(requirement.window):
                raise ValidationFailed(
                    'Requirement window must lie within the appointment window',
                    details={'index': index, 'requirement': requirement.to_dict()},
                )
            earlier = requirements[:index]
            if requirement.staff_id is not None:
                conflict = self._check_staff(
                    index, requirement, earlier, company_id, location_id, now,
                    exclude_appointment_id, exclude_hold_id,
                )
            else:
                conflict = self._check_resource_type(
                    index, requirement, earlier, company_id, location_id, now,
                    exclude_appointment_id, exclude_hold_id, species,
                )
            if conflict is not None:
                conflicts.append(conflict)

        return AvailabilityResult(conflicts)

    def resources_for(self, company_id, location_id, resource_type_id, species=None):
        """Active resources of a type at a location, optionally limited to a species"""
        resources = Resource.query.filter_by(
            company_id=company_id,
            location_id=location_id,
            resource_type_id=resource_type_id,
            active=True,
        ).order_by(Resource.id).all()
        if species:
            resources = [resource for resource in resources if resource.serves_species(species)]
        return resources

    def occupied_resource_ids(self, company_id, location_id, resource_type_id, blocked_window,
                              exclude_appointment_id=None):
        """Concrete resources already claimed by active reservations overlapping the window"""
        reservations = self._overlapping_reservations(
            company_id, location_id, resource_type_id, blocked_window, exclude_appointment_id,
        )
        return {reservation.resource_id for reservation in reservations if reservation.resource_id is not None}

    def _check_staff(self, index, requirement, earlier, company_id, location_id, now,
                     exclude_appointment_id, exclude_hold_id):
        blocked = requirement.blocked_window

        # Active appointments for this staff member at the location
        query = db.session.query(Appointment.id).filter(
            Appointment.company_id == company_id,
            Appointment.location_id == location_id,
            Appointment.staff_id == requirement.staff_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.blocked_start < blocked.end,
            Appointment.blocked_end > blocked.start,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        appointment_ids = [row.id for row in query.order_by(Appointment.start).all()]
        if appointment_ids:
            return Conflict(index, requirement, REASON_OVERLAPPING_APPOINTMENT, appointment_ids=appointment_ids)

        # Unexpired holds on the same staff member
        entries = self._active_hold_entries(company_id, location_id, now, exclude_hold_id).filter(
            HoldEntry.staff_id == requirement.staff_id,
            HoldEntry.blocked_start < blocked.end,
            HoldEntry.blocked_end > blocked.start,
        ).all()
        if entries:
            hold_ids = sorted({entry.hold_id for entry in entries})
            return Conflict(index, requirement, REASON_OVERLAPPING_HOLD, hold_ids=hold_ids)

        for other in earlier:
            if other.staff_id == requirement.staff_id and other.blocked_window.overlaps(blocked):
                return Conflict(index, requirement, REASON_OVERLAPPING_REQUIREMENT)

        time_off = TimeOff.query.filter(
            TimeOff.company_id == company_id,
            TimeOff.staff_id == requirement.staff_id,
            TimeOff.start < requirement.window.end,
            TimeOff.end > requirement.window.start,
        ).first()
        if time_off is not None:
            return Conflict(index, requirement, REASON_STAFF_TIME_OFF)

        if not self._within_working_hours(location_id, requirement.staff_id, requirement.window):
            return Conflict(index, requirement, REASON_OUTSIDE_WORKING_HOURS)

        return None

    def _check_resource_type(self, index, requirement, earlier, company_id, location_id, now,
                             exclude_appointment_id, exclude_hold_id, species):
        blocked = requirement.blocked_window

        resources = self.resources_for(company_id, location_id, requirement.resource_type_id, species)
        capacity = len(resources)
        resource_ids = {resource.id for resource in resources}

        # Reservations on instances outside the species-compatible set do not reduce capacity
        reservations = [
            reservation for reservation in self._overlapping_reservations(
                company_id, location_id, requirement.resource_type_id, blocked, exclude_appointment_id,
            )
            if reservation.resource_id is None or reservation.resource_id in resource_ids
        ]

        entries = self._active_hold_entries(company_id, location_id, now, exclude_hold_id).filter(
            HoldEntry.resource_type_id == requirement.resource_type_id,
            HoldEntry.blocked_start < blocked.end,
            HoldEntry.blocked_end > blocked.start,
        ).all()

        pending = sum(
            other.quantity for other in earlier
            if other.resource_type_id == requirement.resource_type_id and other.blocked_window.overlaps(blocked)
        )

        used = len(reservations) + len(entries) + pending
        if capacity - used >= requirement.quantity:
            return None

        reason = REASON_NO_RESOURCES if capacity == 0 else REASON_INSUFFICIENT_CAPACITY
        return Conflict(
            index,
            requirement,
            reason,
            appointment_ids=sorted({reservation.appointment_id for reservation in reservations}),
            hold_ids=sorted({entry.hold_id for entry in entries}),
            capacity=capacity,
            used=used,
        )

    def _overlapping_reservations(self, company_id, location_id, resource_type_id, blocked,
                                  exclude_appointment_id=None):
        query = ResourceReservation.query.join(
            Appointment, ResourceReservation.appointment_id == Appointment.id,
        ).filter(
            ResourceReservation.company_id == company_id,
            ResourceReservation.location_id == location_id,
            ResourceReservation.resource_type_id == resource_type_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            ResourceReservation.blocked_start < blocked.end,
            ResourceReservation.blocked_end > blocked.start,
        )
        if exclude_appointment_id is not None:
            query = query.filter(ResourceReservation.appointment_id != exclude_appointment_id)
        return query.order_by(ResourceReservation.id).all()

    def _active_hold_entries(self, company_id, location_id, now, exclude_hold_id=None):
        # Expired holds never count, whether or not they were swept yet
        query = HoldEntry.query.join(BookingHold, HoldEntry.hold_id == BookingHold.id).filter(
            BookingHold.company_id == company_id,
            BookingHold.location_id == location_id,
            BookingHold.expires_at > now,
        )
        if exclude_hold_id is not None:
            query = query.filter(BookingHold.id != exclude_hold_id)
        return query

    def _within_working_hours(self, location_id, staff_id, window):
        location = db.session.get(Location, location_id)
        zone = _zone(location.get_timezone() if location else None)
        local_start = window.start.replace(tzinfo=timezone.utc).astimezone(zone)
        local_end = window.end.replace(tzinfo=timezone.utc).astimezone(zone)
        weekday = local_start.weekday()

        breaks = []
        schedules = StaffSchedule.query.filter_by(staff_id=staff_id, location_id=location_id)
        if schedules.count():
            # A staff member with a schedule works only on the days it lists
            schedule = schedules.filter_by(day_of_week=weekday).first()
            if schedule is None:
                return False
            opening, closing = schedule.start_time, schedule.end_time
            breaks = [(pause.start_time, pause.end_time) for pause in schedule.breaks]
        else:
            hours = BusinessHours.get_business_hours(location_id)
            if not hours:
                # Location has no hours configured
                return True
            day = hours.get(weekday)
            if day is None or day.is_closed:
                return False
            opening, closing = day.open_time, day.close_time

        if local_end.date() != local_start.date():
            return False

        start_time = local_start.time()
        end_time = local_end.time()
        if start_time < opening or end_time > closing:
            return False
        for break_start, break_end in breaks:
            if overlaps(start_time, end_time, break_start, break_end):
                return False
        return True
