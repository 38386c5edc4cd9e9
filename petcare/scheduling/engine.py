"""Scheduling Engine.

Entry point for every booking operation. It scopes each request to the
acting staff member's company, turns service items into availability
requirements, and runs check-and-write as one reservation transaction:
locks for every staff/resource-type key involved, a fresh availability
check, the write and the commit. Events are emitted only after the commit.
"""
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import DBAPIError

from petcare import db
from petcare.models.appointment import Appointment, STATUSES, STATUS_CANCELED, SOURCES, SOURCE_ONLINE
from petcare.models.catalog import ResourceType, ServiceCategory, ServiceItem
from petcare.models.company import Location
from petcare.models.customer import Customer, Pet, PET_SPECIES
from petcare.models.reservation import BookingHold
from petcare.models.user import User
from petcare.scheduling.availability import AvailabilityIndex, Requirement, TimeWindow
from petcare.scheduling.clock import utcnow, to_utc_naive
from petcare.scheduling.errors import (
    BookingConflict, InvalidLocation, NotFound, SchedulingError, SchedulingUnavailable,
    SlotConflict, ValidationFailed,
)
from petcare.scheduling.events import emit, appointment_created, appointment_updated, appointment_canceled
from petcare.scheduling.holds import HoldManager
from petcare.scheduling.lifecycle import AppointmentDraft, AppointmentLifecycle, SCHEDULING_FIELDS
from petcare.scheduling.locks import LockTimeout, ReservationLocks


class SchedulingEngine(object):
    def __init__(self, clock=None, hold_ttl_seconds=300, hold_max_ttl_seconds=3600, write_retries=3,
                 lock_timeout=5.0):
        self.clock = clock or utcnow
        self.write_retries = max(1, int(write_retries))
        self.index = AvailabilityIndex(self.now)
        self.holds = HoldManager(self.index, self.now, hold_ttl_seconds, hold_max_ttl_seconds)
        self.lifecycle = AppointmentLifecycle(self.index, self.now)
        self.locks = ReservationLocks(lock_timeout)

    @classmethod
    def from_config(cls, config):
        return cls(
            clock=config.get('SCHEDULING_CLOCK'),
            hold_ttl_seconds=config.get('HOLD_TTL_SECONDS', 300),
            hold_max_ttl_seconds=config.get('HOLD_MAX_TTL_SECONDS', 3600),
            write_retries=config.get('BOOKING_WRITE_RETRIES', 3),
            lock_timeout=config.get('LOCK_TIMEOUT_SECONDS', 5.0),
        )

    def now(self):
        return to_utc_naive(self.clock())

    # Reservation transaction

    def _run_reservation(self, keys, work, conflict_cls=BookingConflict):
        """Run `work` under the locks for `keys` and commit, retrying transient failures"""
        for attempt in range(1, self.write_retries + 1):
            try:
                with self.locks.hold(keys):
                    result = work()
                    db.session.commit()
                return result
            except SchedulingError:
                db.session.rollback()
                raise
            except LockTimeout as e:
                db.session.rollback()
                current_app.logger.warning(f"{e} (attempt {attempt}/{self.write_retries})")
                if attempt == self.write_retries:
                    raise conflict_cls(
                        'Another booking for the same slot is in progress, please try again',
                        details={'lock_key': e.key},
                    )
            except DBAPIError as e:
                db.session.rollback()
                current_app.logger.warning(
                    f"Storage error during reservation write (attempt {attempt}/{self.write_retries}): {e}"
                )
                if attempt == self.write_retries:
                    raise SchedulingUnavailable(
                        'Scheduling is temporarily unavailable, please retry',
                        details={'attempts': attempt},
                    ) from e

    def _lock_keys(self, company_id, location_id, requirements):
        return sorted({requirement.lock_key(company_id, location_id) for requirement in requirements})

    # Scoping

    def _location(self, company_id, location_id):
        location = db.session.get(Location, location_id) if location_id is not None else None
        if location is None or location.company_id != company_id or not location.active:
            raise InvalidLocation(
                'Location does not exist for this company',
                details={'location_id': location_id},
            )
        return location

    def _scoped(self, model, entity_id, company_id, field):
        entity = db.session.get(model, entity_id) if entity_id is not None else None
        if entity is None or entity.company_id != company_id:
            raise NotFound(f'{model.__name__} not found', details={field: entity_id})
        return entity

    def _staff(self, company_id, staff_id, service=None):
        staff = self._scoped(User, staff_id, company_id, 'staff_id')
        if not staff.is_active:
            raise ValidationFailed('Staff member is not active', details={'staff_id': staff_id})
        if service is not None and not staff.can_perform(service.id):
            raise ValidationFailed(
                'Staff member is not qualified for this service',
                details={'staff_id': staff_id, 'service_id': service.id},
                code='STAFF_NOT_QUALIFIED',
            )
        return staff

    def _service_item(self, company_id, service_item_id, service_id=None):
        item = self._scoped(ServiceItem, service_item_id, company_id, 'service_item_id')
        if service_id is not None and item.service_category_id != service_id:
            raise ValidationFailed(
                'Service item does not belong to the service',
                details={'service_id': service_id, 'service_item_id': service_item_id},
            )
        if not item.active or not item.service.active:
            raise ValidationFailed('Service item is not bookable', details={'service_item_id': service_item_id})
        return item

    def _pet(self, company_id, pet_id, customer_id=None):
        pet = self._scoped(Pet, pet_id, company_id, 'pet_id')
        if customer_id is not None and pet.customer_id != customer_id:
            raise ValidationFailed(
                'Pet does not belong to the customer',
                details={'pet_id': pet_id, 'customer_id': customer_id},
            )
        return pet

    def _window(self, item, start, end=None):
        start = to_utc_naive(start)
        if start is None:
            raise ValidationFailed('Start time is required', details={'start': None})
        end = to_utc_naive(end) or start + timedelta(minutes=item.duration_minutes)
        return TimeWindow(start, end)

    def requirements_for(self, item, window, staff_id=None):
        """Staff and resource-type requirements of a service item booked for `window`"""
        requirements = []
        if staff_id is not None:
            requirements.append(Requirement(
                window,
                staff_id=staff_id,
                buffer_before=item.buffer_before_minutes or 0,
                buffer_after=item.buffer_after_minutes or 0,
            ))
        for need in item.required_resources:
            start = window.start + timedelta(minutes=need.offset_minutes or 0)
            requirements.append(Requirement(
                TimeWindow(start, start + timedelta(minutes=need.duration_minutes)),
                resource_type_id=need.resource_type_id,
                quantity=need.quantity or 1,
                buffer_before=need.buffer_before_minutes or 0,
                buffer_after=need.buffer_after_minutes or 0,
            ))
        return requirements

    def _explicit_requirements(self, company_id, entries):
        requirements = []
        for position, entry in enumerate(entries):
            staff_id = entry.get('staff_id')
            resource_type_id = entry.get('resource_type_id')
            if staff_id is None and resource_type_id is None:
                raise ValidationFailed(
                    'Each requirement needs a staff_id or a resource_type_id',
                    details={'index': position},
                )
            window = TimeWindow(to_utc_naive(entry.get('start')), to_utc_naive(entry.get('end')))
            buffers = {
                'buffer_before': entry.get('buffer_before') or 0,
                'buffer_after': entry.get('buffer_after') or 0,
            }
            # An entry naming both becomes one staff and one resource-type requirement
            if staff_id is not None:
                self._staff(company_id, staff_id)
                requirements.append(Requirement(window, staff_id=staff_id, **buffers))
            if resource_type_id is not None:
                self._scoped(ResourceType, resource_type_id, company_id, 'resource_type_id')
                requirements.append(Requirement(
                    window,
                    resource_type_id=resource_type_id,
                    quantity=entry.get('quantity') or 1,
                    **buffers
                ))
        return requirements

    def _requested_requirements(self, company_id, data):
        """Window, requirements and species of a check or hold request"""
        species = data.get('species')
        if data.get('pet_id') is not None:
            species = self._pet(company_id, data['pet_id'], data.get('customer_id')).species
        if species and species not in PET_SPECIES:
            raise ValidationFailed(f"Unknown species '{species}'", details={'species': species})

        entries = data.get('requirements') or data.get('tentative')
        if entries:
            requirements = self._explicit_requirements(company_id, entries)
            window = TimeWindow(
                min(requirement.window.start for requirement in requirements),
                max(requirement.window.end for requirement in requirements),
            )
        else:
            if data.get('service_item_id') is None:
                raise ValidationFailed('Either a service item or explicit requirements are required')
            item = self._service_item(company_id, data['service_item_id'], data.get('service_id'))
            staff_id = data.get('staff_id')
            if staff_id is not None:
                self._staff(company_id, staff_id, item.service)
            window = self._window(item, data.get('start'), data.get('end'))
            requirements = self.requirements_for(item, window, staff_id)

        if not requirements:
            raise ValidationFailed('Nothing to reserve: the request has no requirements')
        return window, requirements, species

    def _build_draft(self, company_id, data, actor_id=None):
        """Validate an appointment request; returns the draft, its requirements and the pet species"""
        location = self._location(company_id, data.get('location_id'))
        customer = self._scoped(Customer, data.get('customer_id'), company_id, 'customer_id')
        pet = self._pet(company_id, data.get('pet_id'), customer.id)
        service = self._scoped(ServiceCategory, data.get('service_id'), company_id, 'service_id')
        item = self._service_item(company_id, data.get('service_item_id'), service.id)
        staff_id = data.get('staff_id')
        if staff_id is not None:
            self._staff(company_id, staff_id, service)

        source = data.get('source') or SOURCE_ONLINE
        if source not in SOURCES:
            raise ValidationFailed(f"Unknown source '{source}'", details={'source': source, 'allowed': list(SOURCES)})
        notes = data.get('notes')
        if notes and len(notes) > 500:
            raise ValidationFailed('Notes cannot exceed 500 characters', details={'notes': len(notes)})

        window = self._window(item, data.get('start'), data.get('end'))
        draft = AppointmentDraft(
            company_id=company_id,
            location_id=location.id,
            customer_id=customer.id,
            pet_id=pet.id,
            service_id=service.id,
            service_item_id=item.id,
            start=window.start,
            end=window.end,
            staff_id=staff_id,
            notes=notes,
            source=source,
            scheduled_by_user_id=actor_id,
        )
        return draft, self.requirements_for(item, window, staff_id), pet.species

    # Availability and holds

    def check_availability(self, actor, data):
        company_id = actor.company_id
        location = self._location(company_id, data.get('location_id'))
        window, requirements, species = self._requested_requirements(company_id, data)
        return self.index.check(
            company_id,
            location.id,
            window,
            requirements,
            exclude_appointment_id=data.get('exclude_appointment_id'),
            exclude_hold_id=data.get('exclude_hold_id'),
            species=species,
        )

    def create_hold(self, actor, data):
        company_id = actor.company_id
        location = self._location(company_id, data.get('location_id'))
        customer = self._scoped(Customer, data.get('customer_id'), company_id, 'customer_id')
        window, requirements, species = self._requested_requirements(company_id, data)

        def work():
            return self.holds.create(
                company_id,
                location.id,
                customer.id,
                window,
                requirements,
                ttl_seconds=data.get('ttl_seconds'),
                created_by=data.get('created_by') or 'web',
                species=species,
            )

        return self._run_reservation(self._lock_keys(company_id, location.id, requirements), work, SlotConflict)

    def release_hold(self, actor, hold_id):
        released = self._run_reservation([], lambda: self.holds.release(hold_id, actor.company_id))
        current_app.logger.info(f"Hold {hold_id} release requested by {actor.id}: released={released}")
        return released

    def active_holds(self, actor, location_id=None):
        return self.holds.list_active(actor.company_id, location_id)

    def sweep_expired_holds(self):
        return self._run_reservation([], lambda: self.holds.sweep_expired(self.now()))

    # Appointments

    def create_appointment(self, actor, data, hold_id=None):
        company_id = actor.company_id
        draft, requirements, species = self._build_draft(company_id, data, actor.id)

        def work():
            hold = None
            if hold_id is not None:
                hold = BookingHold.query.filter_by(id=hold_id, company_id=company_id).first()
                if hold is None:
                    raise NotFound('Hold not found', details={'hold_id': hold_id})
                if hold.customer_id != draft.customer_id or hold.location_id != draft.location_id:
                    raise ValidationFailed(
                        'Hold was made for another customer or location',
                        details={'hold_id': hold_id},
                    )
                if hold.is_expired(self.now()):
                    current_app.logger.info(f"Hold {hold_id} expired before conversion, booking without it")
            appointment = self.lifecycle.create(draft, requirements, species=species, exclude_hold_id=hold_id)
            if hold is not None:
                self.holds.convert(hold)
            return appointment

        appointment = self._run_reservation(self._lock_keys(company_id, draft.location_id, requirements), work)
        current_app.logger.info(f"Appointment {appointment.id} booked by {actor.id}")
        emit(appointment_created, appointment, actor.id)
        return appointment

    def get_appointment(self, actor, appointment_id):
        appointment = Appointment.query.filter_by(id=appointment_id, company_id=actor.company_id).first()
        if appointment is None:
            raise NotFound('Appointment not found', details={'appointment_id': appointment_id})
        return appointment

    def list_appointments(self, actor, filters=None):
        filters = filters or {}
        query = Appointment.query.filter_by(company_id=actor.company_id)
        for field in ('location_id', 'staff_id', 'customer_id'):
            if filters.get(field) is not None:
                query = query.filter(getattr(Appointment, field) == filters[field])
        status = filters.get('status')
        if status:
            if status not in STATUSES:
                raise ValidationFailed(f"Unknown status '{status}'", details={'status': status})
            query = query.filter(Appointment.status == status)
        if filters.get('start_from') is not None:
            query = query.filter(Appointment.start >= to_utc_naive(filters['start_from']))
        if filters.get('start_to') is not None:
            query = query.filter(Appointment.start < to_utc_naive(filters['start_to']))
        return query.order_by(Appointment.start, Appointment.id).all()

    def _appointment_key(self, appointment):
        return f'{appointment.company_id}:appointment:{appointment.id}'

    def _reload(self, appointment, expected=None):
        """Re-read the row under its appointment lock; `expected` guards the fields a change was built from"""
        db.session.refresh(appointment, with_for_update=True)
        if expected is not None and _snapshot(appointment) != expected:
            raise BookingConflict(
                'Appointment was changed by another request, please try again',
                details={'appointment_id': appointment.id},
            )
        return appointment

    def update_appointment(self, actor, appointment_id, changes):
        company_id = actor.company_id
        appointment = self.get_appointment(actor, appointment_id)
        if appointment.is_terminal():
            raise ValidationFailed(
                f"A {appointment.status} appointment can no longer be changed",
                details={'appointment_id': appointment.id, 'status': appointment.status},
            )

        changes = {field: value for field, value in changes.items() if value is not None}
        species_changed = False
        if 'pet_id' in changes:
            pet = self._pet(company_id, changes['pet_id'], appointment.customer_id)
            species_changed = pet.species != appointment.pet.species
        if 'source' in changes and changes['source'] not in SOURCES:
            raise ValidationFailed(f"Unknown source '{changes['source']}'", details={'source': changes['source']})

        requirements = species = expected = None
        keys = [self._appointment_key(appointment)]
        # Another species may not fit the resources already pinned
        if species_changed or any(field in changes for field in SCHEDULING_FIELDS):
            expected = _snapshot(appointment)
            start = to_utc_naive(changes.get('start')) or appointment.start
            end = to_utc_naive(changes.get('end'))
            if end is None and 'service_item_id' not in changes:
                # Moving keeps the booked length
                end = start + (appointment.end - appointment.start)
            draft, requirements, species = self._build_draft(company_id, {
                'location_id': appointment.location_id,
                'customer_id': appointment.customer_id,
                'pet_id': changes.get('pet_id', appointment.pet_id),
                'service_id': changes.get('service_id', appointment.service_id),
                'service_item_id': changes.get('service_item_id', appointment.service_item_id),
                'staff_id': changes.get('staff_id', appointment.staff_id),
                'start': start,
                'end': end,
                'notes': changes.get('notes', appointment.notes),
                'source': changes.get('source', appointment.source),
            })
            changes.update({
                'start': draft.start,
                'end': draft.end,
                'staff_id': draft.staff_id,
                'service_id': draft.service_id,
                'service_item_id': draft.service_item_id,
            })
            keys += self._lock_keys(company_id, appointment.location_id, requirements)

        def work():
            self._reload(appointment, expected)
            return self.lifecycle.update(appointment, changes, requirements, species)

        appointment = self._run_reservation(keys, work)
        emit(appointment_updated, appointment, actor.id)
        return appointment

    def transition_status(self, actor, appointment_id, status, reason=None):
        appointment = self.get_appointment(actor, appointment_id)

        def work():
            # The table is checked against the committed status, never a stale read
            self._reload(appointment)
            self.lifecycle.transition(appointment, status, actor.id, reason)
            return appointment

        self._run_reservation([self._appointment_key(appointment)], work)
        emit(appointment_canceled if status == STATUS_CANCELED else appointment_updated, appointment, actor.id)
        return appointment

    def reschedule_appointment(self, actor, appointment_id, data):
        """Cancel an appointment and book its replacement in one transaction; returns (old, new)"""
        company_id = actor.company_id
        appointment = self.get_appointment(actor, appointment_id)
        if appointment.is_terminal():
            raise ValidationFailed(
                f"A {appointment.status} appointment cannot be rescheduled",
                details={'appointment_id': appointment.id, 'status': appointment.status},
            )

        expected = _snapshot(appointment)
        start = to_utc_naive(data.get('start'))
        if start is None:
            raise ValidationFailed('Start time is required', details={'start': None})
        end = to_utc_naive(data.get('end')) or start + (appointment.end - appointment.start)
        staff_id = data.get('staff_id') or appointment.staff_id

        draft, requirements, species = self._build_draft(company_id, {
            'location_id': appointment.location_id,
            'customer_id': appointment.customer_id,
            'pet_id': appointment.pet_id,
            'service_id': appointment.service_id,
            'service_item_id': appointment.service_item_id,
            'staff_id': staff_id,
            'start': start,
            'end': end,
            'notes': data.get('notes') or appointment.notes,
            'source': appointment.source,
        }, actor.id)

        def work():
            self._reload(appointment, expected)
            return self.lifecycle.reschedule(appointment, draft, requirements, data.get('reason'), actor.id, species)

        keys = [self._appointment_key(appointment)] + self._lock_keys(company_id, appointment.location_id, requirements)
        replacement = self._run_reservation(keys, work)
        current_app.logger.info(f"Appointment {appointment.id} rescheduled to {replacement.id} by {actor.id}")
        emit(appointment_canceled, appointment, actor.id)
        emit(appointment_created, replacement, actor.id)
        return appointment, replacement


def _snapshot(appointment):
    """Fields an update or reschedule request is derived from"""
    return (
        appointment.pet_id,
        appointment.service_item_id,
        appointment.staff_id,
        appointment.start,
        appointment.end,
    )
