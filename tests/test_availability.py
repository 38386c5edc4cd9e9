"""Tests for the availability index: overlap, buffers, capacity, holds and working hours."""

from datetime import time

import pytest

from conftest import at
from petcare import db
from petcare.models import BusinessHours, StaffSchedule, TimeOff
from petcare.models.availability import MONDAY, TUESDAY
from petcare.scheduling.availability import (
    Requirement, TimeWindow, overlaps,
    REASON_OVERLAPPING_APPOINTMENT, REASON_OVERLAPPING_HOLD, REASON_OVERLAPPING_REQUIREMENT,
    REASON_STAFF_TIME_OFF, REASON_OUTSIDE_WORKING_HOURS, REASON_NO_RESOURCES,
    REASON_INSUFFICIENT_CAPACITY,
)
from petcare.scheduling.errors import ValidationFailed


def staff_requirement(staff, start, end, **kwargs):
    return Requirement(TimeWindow(start, end), staff_id=staff.id, **kwargs)


def table_requirement(seed, start, end, **kwargs):
    return Requirement(TimeWindow(start, end), resource_type_id=seed.table_type.id, **kwargs)


def check(engine, seed, requirements, **kwargs):
    window = TimeWindow(
        min(r.window.start for r in requirements),
        max(r.window.end for r in requirements),
    )
    return engine.index.check(seed.company.id, seed.location.id, window, requirements, **kwargs)


class TestWindows:
    """Tests for the interval primitives."""

    def test_overlap_is_half_open(self):
        assert overlaps(at(9), at(10), at(9, 30), at(10, 30))
        assert not overlaps(at(9), at(10), at(10), at(11))
        assert not overlaps(at(10), at(11), at(9), at(10))

    def test_window_must_end_after_start(self):
        with pytest.raises(ValidationFailed):
            TimeWindow(at(10), at(10))
        with pytest.raises(ValidationFailed):
            TimeWindow(at(10), at(9))

    def test_expand_applies_buffers(self):
        window = TimeWindow(at(9), at(10)).expand(15, 10)
        assert window.start == at(8, 45)
        assert window.end == at(10, 10)

    def test_requirement_needs_exactly_one_target(self):
        window = TimeWindow(at(9), at(10))
        with pytest.raises(ValidationFailed):
            Requirement(window)
        with pytest.raises(ValidationFailed):
            Requirement(window, staff_id=1, resource_type_id=2)
        with pytest.raises(ValidationFailed):
            Requirement(window, resource_type_id=2, quantity=0)

    def test_lock_key_names_scope_and_target(self):
        requirement = Requirement(TimeWindow(at(9), at(10)), resource_type_id=7)
        assert requirement.lock_key(1, 2) == '1:2:resource_type:7'


class TestStaffAvailability:
    """Tests for staff requirements."""

    def test_free_staff_is_available(self, engine, seed):
        result = check(engine, seed, [staff_requirement(seed.s1, at(9), at(10))])
        assert result.available
        assert result.conflicts == []

    def test_overlapping_appointment_conflicts(self, engine, seed, booking):
        booked = engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        result = check(engine, seed, [staff_requirement(seed.s1, at(9, 30), at(10))])

        assert not result.available
        conflict = result.conflicts[0]
        assert conflict.kind == 'staff'
        assert conflict.reason == REASON_OVERLAPPING_APPOINTMENT
        assert conflict.appointment_ids == [booked.id]

    def test_touching_windows_do_not_conflict(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        before = check(engine, seed, [staff_requirement(seed.s1, at(8), at(9))])
        after = check(engine, seed, [staff_requirement(seed.s1, at(9, 45), at(10, 30))])

        assert before.available
        assert after.available

    def test_buffers_extend_the_blocked_window(self, engine, seed, booking):
        seed.groom_item.buffer_after_minutes = 15
        db.session.commit()
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        # Busy until 09:45 plus 15 minutes of cleanup
        assert not check(engine, seed, [staff_requirement(seed.s1, at(9, 50), at(10, 30))]).available
        assert check(engine, seed, [staff_requirement(seed.s1, at(10), at(10, 30))]).available

    def test_requirement_buffer_reaches_existing_appointment(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        requirement = staff_requirement(seed.s1, at(10), at(10, 30), buffer_before=20)

        assert not check(engine, seed, [requirement]).available

    def test_canceled_appointment_frees_staff(self, engine, seed, booking):
        booked = engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))
        engine.transition_status(seed.manager, booked.id, 'canceled', reason='customer_requested')

        assert check(engine, seed, [staff_requirement(seed.s1, at(9), at(9, 45))]).available

    def test_excluded_appointment_is_ignored(self, engine, seed, booking):
        booked = engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        result = check(
            engine, seed, [staff_requirement(seed.s1, at(9, 15), at(10))],
            exclude_appointment_id=booked.id,
        )

        assert result.available

    def test_same_staff_twice_in_one_request(self, engine, seed):
        result = check(engine, seed, [
            staff_requirement(seed.s1, at(9), at(10)),
            staff_requirement(seed.s1, at(9, 30), at(10)),
        ])

        assert [c.index for c in result.conflicts] == [1]
        assert result.conflicts[0].reason == REASON_OVERLAPPING_REQUIREMENT

    def test_time_off_blocks_staff(self, engine, seed):
        db.session.add(TimeOff(seed.company.id, seed.s1.id, at(12), at(17), reason='Dentist'))
        db.session.commit()

        result = check(engine, seed, [staff_requirement(seed.s1, at(16), at(17))])

        assert result.conflicts[0].reason == REASON_STAFF_TIME_OFF
        assert check(engine, seed, [staff_requirement(seed.s1, at(11), at(12))]).available


class TestWorkingHours:
    """Tests for staff schedules and location business hours."""

    def test_no_hours_configured_is_unrestricted(self, engine, seed):
        assert check(engine, seed, [staff_requirement(seed.s1, at(5), at(6))]).available

    def test_staff_schedule_bounds_and_break(self, engine, seed):
        db.session.add(StaffSchedule(
            seed.company.id, seed.s1.id, seed.location.id, MONDAY, time(9), time(17),
            breaks=[(time(12), time(13))],
        ))
        db.session.commit()

        assert check(engine, seed, [staff_requirement(seed.s1, at(9), at(10))]).available
        early = check(engine, seed, [staff_requirement(seed.s1, at(8, 30), at(9, 30))])
        assert early.conflicts[0].reason == REASON_OUTSIDE_WORKING_HOURS
        lunch = check(engine, seed, [staff_requirement(seed.s1, at(11, 30), at(12, 30))])
        assert lunch.conflicts[0].reason == REASON_OUTSIDE_WORKING_HOURS
        assert check(engine, seed, [staff_requirement(seed.s1, at(13), at(14))]).available

    def test_every_break_of_the_day_is_respected(self, engine, seed):
        db.session.add(StaffSchedule(
            seed.company.id, seed.s1.id, seed.location.id, MONDAY, time(8), time(18),
            breaks=[(time(10), time(10, 15)), (time(15), time(15, 30))],
        ))
        db.session.commit()

        schedule = StaffSchedule.query.filter_by(staff_id=seed.s1.id).one()
        assert [(b.start_time, b.end_time) for b in schedule.breaks] == [
            (time(10), time(10, 15)), (time(15), time(15, 30)),
        ]
        for start, end in [(at(9, 45), at(10, 5)), (at(15, 15), at(16))]:
            result = check(engine, seed, [staff_requirement(seed.s1, start, end)])
            assert result.conflicts[0].reason == REASON_OUTSIDE_WORKING_HOURS
        assert check(engine, seed, [staff_requirement(seed.s1, at(10, 15), at(15))]).available

    def test_staff_without_schedule_for_the_day_is_off(self, engine, seed):
        db.session.add(StaffSchedule(seed.company.id, seed.s1.id, seed.location.id, TUESDAY, time(9), time(17)))
        db.session.commit()

        result = check(engine, seed, [staff_requirement(seed.s1, at(10), at(11))])

        assert result.conflicts[0].reason == REASON_OUTSIDE_WORKING_HOURS

    def test_business_hours_apply_without_staff_schedule(self, engine, seed):
        db.session.add(BusinessHours(seed.location.id, MONDAY, time(8), time(18)))
        db.session.add(BusinessHours(seed.location.id, TUESDAY, time(8), time(18), is_closed=True))
        db.session.commit()

        assert check(engine, seed, [staff_requirement(seed.s1, at(17), at(18))]).available
        assert not check(engine, seed, [staff_requirement(seed.s1, at(17, 30), at(18, 30))]).available

    def test_location_timezone_is_used(self, engine, seed):
        seed.location.timezone = 'America/New_York'
        db.session.add(StaffSchedule(seed.company.id, seed.s1.id, seed.location.id, MONDAY, time(9), time(17)))
        db.session.commit()

        # 14:00 UTC is 09:00 in New York in March before DST starts
        assert check(engine, seed, [staff_requirement(seed.s1, at(14), at(15))]).available
        assert not check(engine, seed, [staff_requirement(seed.s1, at(9), at(10))]).available


class TestResourceCapacity:
    """Tests for resource-type requirements."""

    def test_capacity_counts_active_reservations(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9)))
        engine.create_appointment(seed.manager, booking(at(9)))

        result = check(engine, seed, [table_requirement(seed, at(9), at(9, 30))])

        conflict = result.conflicts[0]
        assert conflict.kind == 'resource_type'
        assert conflict.reason == REASON_INSUFFICIENT_CAPACITY
        assert conflict.capacity == 2
        assert conflict.used == 2
        assert len(conflict.appointment_ids) == 2
        assert conflict.to_dict()['requested'] == 1

    def test_quantity_beyond_capacity(self, engine, seed):
        result = check(engine, seed, [table_requirement(seed, at(9), at(9, 30), quantity=3)])
        assert result.conflicts[0].reason == REASON_INSUFFICIENT_CAPACITY

    def test_earlier_requirements_of_the_request_count(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9)))

        result = check(engine, seed, [
            table_requirement(seed, at(9), at(9, 30)),
            table_requirement(seed, at(9, 15), at(9, 30)),
        ])

        assert [c.index for c in result.conflicts] == [1]

    def test_inactive_resources_do_not_count(self, engine, seed):
        for resource in seed.table_type.resources:
            resource.active = False
        db.session.commit()

        result = check(engine, seed, [table_requirement(seed, at(9), at(9, 30))])

        assert result.conflicts[0].reason == REASON_NO_RESOURCES
        assert result.conflicts[0].capacity == 0

    def test_species_filters_capacity(self, engine, seed):
        tub = Requirement(TimeWindow(at(9), at(9, 30)), resource_type_id=seed.tub_type.id)

        assert check(engine, seed, [tub], species='dog').available
        result = check(engine, seed, [tub], species='cat')
        assert result.conflicts[0].reason == REASON_NO_RESOURCES

    def test_unexpired_hold_occupies_capacity(self, engine, seed, clock):
        clock.set(at(9))
        hold = engine.create_hold(seed.manager, {
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'requirements': [{'resource_type_id': seed.tub_type.id, 'start': at(9), 'end': at(9, 30)}],
        })
        tub = Requirement(TimeWindow(at(9), at(9, 30)), resource_type_id=seed.tub_type.id)

        result = check(engine, seed, [tub])
        assert result.conflicts[0].hold_ids == [hold.id]
        assert check(engine, seed, [tub], exclude_hold_id=hold.id).available

        clock.advance(minutes=5)
        assert check(engine, seed, [tub]).available

    def test_staff_hold_conflicts(self, engine, seed):
        engine.create_hold(seed.manager, {
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'tentative': [{'staff_id': seed.s2.id, 'start': at(11), 'end': at(12)}],
        })

        result = check(engine, seed, [staff_requirement(seed.s2, at(11, 30), at(12, 30))])

        assert result.conflicts[0].reason == REASON_OVERLAPPING_HOLD


class TestCheckReporting:
    """Tests for how a check reports its findings."""

    def test_every_conflicting_requirement_is_reported(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s2))

        result = check(engine, seed, [
            staff_requirement(seed.s1, at(9), at(9, 45)),
            table_requirement(seed, at(9), at(9, 30)),
            staff_requirement(seed.s2, at(9), at(9, 45)),
        ])

        assert [c.index for c in result.conflicts] == [0, 1, 2]
        assert result.to_dict()['available'] is False

    def test_requirement_outside_the_window_is_rejected(self, engine, seed):
        requirement = staff_requirement(seed.s1, at(9), at(11))
        with pytest.raises(ValidationFailed):
            engine.index.check(seed.company.id, seed.location.id, TimeWindow(at(9), at(10)), [requirement])

    def test_engine_check_for_service_item(self, engine, seed, booking):
        engine.create_appointment(seed.manager, booking(at(9), staff=seed.s1))

        result = engine.check_availability(seed.manager, {
            'location_id': seed.location.id,
            'service_item_id': seed.groom_item.id,
            'staff_id': seed.s1.id,
            'start': at(9, 30),
        })

        assert [c.kind for c in result.conflicts] == ['staff']
