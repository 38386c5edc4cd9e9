from flask import current_app

from petcare import db
from petcare.models.appointment import (
    Appointment, ALLOWED_TRANSITIONS, REASONS_BY_STATUS, RESCHEDULE_REASONS, STATUSES,
    STATUS_CANCELED, STATUS_NO_SHOW, STATUS_TIMESTAMP_FIELDS, SOURCE_ONLINE,
)
from petcare.models.reservation import ResourceReservation
from petcare.scheduling.availability import TimeWindow
from petcare.scheduling.errors import (
    BookingConflict, InvalidStatusTransition, MissingReason, ValidationFailed,
)

# Fields whose change moves the appointment in time or onto other capacity
SCHEDULING_FIELDS = ('start', 'end', 'staff_id', 'service_id', 'service_item_id')
DETAIL_FIELDS = ('pet_id', 'notes', 'source')


class AppointmentDraft(object):
    """A validated, fully scoped appointment request that is not persisted yet"""

    def __init__(self, company_id, location_id, customer_id, pet_id, service_id, service_item_id,
                 start, end, staff_id=None, notes=None, source=SOURCE_ONLINE, scheduled_by_user_id=None):
        self.company_id = company_id
        self.location_id = location_id
        self.customer_id = customer_id
        self.pet_id = pet_id
        self.service_id = service_id
        self.service_item_id = service_item_id
        self.staff_id = staff_id
        self.window = TimeWindow(start, end)
        self.notes = notes
        self.source = source
        self.scheduled_by_user_id = scheduled_by_user_id

    @property
    def start(self):
        return self.window.start

    @property
    def end(self):
        return self.window.end


class AppointmentLifecycle(object):
    """Creates appointments and moves them through the status state machine.

    Every method here only stages changes on the session; the scheduling
    engine owns the transaction and commits once the whole operation succeeds.
    """

    def __init__(self, index, clock):
        self.index = index
        self.clock = clock

    def create(self, draft, requirements, species=None, exclude_hold_id=None, exclude_appointment_id=None):
        result = self.index.check(
            draft.company_id,
            draft.location_id,
            draft.window,
            requirements,
            exclude_appointment_id=exclude_appointment_id,
            exclude_hold_id=exclude_hold_id,
            species=species,
        )
        if not result.available:
            raise BookingConflict('Requested time is not available', conflicts=result.conflicts)

        appointment = Appointment(
            company_id=draft.company_id,
            location_id=draft.location_id,
            customer_id=draft.customer_id,
            pet_id=draft.pet_id,
            service_id=draft.service_id,
            service_item_id=draft.service_item_id,
            start=draft.start,
            end=draft.end,
            staff_id=draft.staff_id,
            notes=draft.notes,
            source=draft.source,
            scheduled_by_user_id=draft.scheduled_by_user_id,
        )
        self._claim(appointment, requirements, species, exclude_appointment_id)
        db.session.add(appointment)
        db.session.flush()
        return appointment

    def transition(self, appointment, new_status, actor_id=None, reason=None):
        """Move to `new_status`; the appointment is untouched when validation fails"""
        if new_status not in STATUSES:
            raise ValidationFailed(
                f"Unknown status '{new_status}'",
                details={'status': new_status, 'allowed': list(STATUSES)},
            )
        if not appointment.can_transition_to(new_status):
            raise InvalidStatusTransition(
                f"Cannot move appointment from '{appointment.status}' to '{new_status}'",
                details={
                    'from': appointment.status,
                    'to': new_status,
                    'allowed': sorted(ALLOWED_TRANSITIONS.get(appointment.status, ())),
                },
            )
        self._validate_reason(new_status, reason, REASONS_BY_STATUS.get(new_status))

        previous = appointment.status
        appointment.status = new_status

        field = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if field and getattr(appointment, field) is None:
            setattr(appointment, field, self.clock())

        if new_status == STATUS_CANCELED:
            appointment.cancel_reason = reason
            appointment.canceled_by_user_id = actor_id
        elif new_status == STATUS_NO_SHOW:
            appointment.no_show_reason = reason

        db.session.flush()
        current_app.logger.info(f"Appointment {appointment.id} moved from {previous} to {new_status}")
        return previous

    def update(self, appointment, changes, requirements=None, species=None):
        """Apply field changes; with `requirements` the new slot is re-checked and reservations rebuilt"""
        if appointment.is_terminal():
            raise ValidationFailed(
                f"A {appointment.status} appointment can no longer be changed",
                details={'appointment_id': appointment.id, 'status': appointment.status},
            )

        if requirements is not None:
            window = TimeWindow(changes.get('start', appointment.start), changes.get('end', appointment.end))
            result = self.index.check(
                appointment.company_id,
                appointment.location_id,
                window,
                requirements,
                exclude_appointment_id=appointment.id,
                species=species,
            )
            if not result.available:
                raise BookingConflict('Requested time is not available', conflicts=result.conflicts)

            for field in SCHEDULING_FIELDS:
                if field in changes:
                    setattr(appointment, field, changes[field])
            appointment.reservations.clear()
            db.session.flush()
            self._claim(appointment, requirements, species, appointment.id)

        for field in DETAIL_FIELDS:
            if field in changes:
                setattr(appointment, field, changes[field])

        db.session.flush()
        return appointment

    def reschedule(self, appointment, draft, requirements, reason, actor_id=None, species=None):
        """Cancel `appointment` and book `draft` in its place, linking the two"""
        if appointment.is_terminal():
            raise ValidationFailed(
                f"A {appointment.status} appointment cannot be rescheduled",
                details={'appointment_id': appointment.id, 'status': appointment.status},
            )
        self._validate_reason('rescheduled', reason, RESCHEDULE_REASONS)

        self.transition(appointment, STATUS_CANCELED, actor_id, reason)
        appointment.reschedule_reason = reason

        replacement = self.create(draft, requirements, species=species, exclude_appointment_id=appointment.id)
        replacement.rescheduled_from_id = appointment.id
        replacement.reschedule_reason = reason
        appointment.rescheduled_to_id = replacement.id
        db.session.flush()
        return replacement

    def _validate_reason(self, status, reason, allowed):
        if allowed is None:
            return
        if not reason:
            raise MissingReason(
                f'A reason is required when an appointment is {status}',
                details={'status': status, 'allowed_reasons': list(allowed)},
            )
        if reason not in allowed:
            raise ValidationFailed(
                f"'{reason}' is not a valid reason",
                details={'reason': reason, 'allowed_reasons': list(allowed)},
            )

    def _claim(self, appointment, requirements, species, exclude_appointment_id):
        """Record the staff blocked window and pick a concrete resource per reserved unit"""
        appointment.blocked_start = appointment.start
        appointment.blocked_end = appointment.end
        picked = []

        for requirement in requirements:
            blocked = requirement.blocked_window
            if requirement.staff_id is not None:
                if requirement.staff_id == appointment.staff_id:
                    appointment.blocked_start = min(appointment.blocked_start, blocked.start)
                    appointment.blocked_end = max(appointment.blocked_end, blocked.end)
                continue

            occupied = self.index.occupied_resource_ids(
                appointment.company_id,
                appointment.location_id,
                requirement.resource_type_id,
                blocked,
                exclude_appointment_id,
            )
            occupied.update(resource_id for resource_id, window in picked if window.overlaps(blocked))
            free = [
                resource.id for resource in self.index.resources_for(
                    appointment.company_id, appointment.location_id, requirement.resource_type_id, species,
                )
                if resource.id not in occupied
            ]

            for unit in range(requirement.quantity):
                resource_id = free[unit] if unit < len(free) else None
                if resource_id is None:
                    current_app.logger.warning(
                        f"No free instance of resource type {requirement.resource_type_id} to pin; "
                        f"reserving by type only"
                    )
                else:
                    picked.append((resource_id, blocked))
                appointment.reservations.append(ResourceReservation(
                    company_id=appointment.company_id,
                    location_id=appointment.location_id,
                    resource_type_id=requirement.resource_type_id,
                    start=requirement.window.start,
                    end=requirement.window.end,
                    blocked_start=blocked.start,
                    blocked_end=blocked.end,
                    resource_id=resource_id,
                ))
