from datetime import timedelta

from flask import current_app

from petcare import db
from petcare.models.reservation import BookingHold, HoldEntry, HOLD_CREATED_BY
from petcare.scheduling.errors import SlotConflict, ValidationFailed


class HoldManager(object):
    """Creates, converts, releases and reaps booking holds.

    An unexpired hold occupies capacity exactly like a confirmed appointment.
    Expiry is passive: every availability query ignores holds whose
    `expires_at` has passed, so sweeping only reclaims rows.
    """

    def __init__(self, index, clock, default_ttl=300, max_ttl=3600):
        self.index = index
        self.clock = clock
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    def ttl_for(self, ttl_seconds=None):
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        if ttl <= 0:
            raise ValidationFailed('Hold TTL must be positive', details={'ttl_seconds': ttl_seconds})
        return min(ttl, self.max_ttl)

    def create(self, company_id, location_id, customer_id, window, requirements, ttl_seconds=None,
               created_by='web', species=None):
        """Re-check availability and persist a hold; call inside the reservation transaction"""
        if created_by not in HOLD_CREATED_BY:
            raise ValidationFailed(
                f"Unknown hold origin '{created_by}'",
                details={'created_by': created_by, 'allowed': list(HOLD_CREATED_BY)},
            )
        ttl = self.ttl_for(ttl_seconds)
        now = self.clock()

        # Lazy cleanup so the table does not grow between sweeps
        self.sweep_expired(now)

        result = self.index.check(company_id, location_id, window, requirements, species=species)
        if not result.available:
            raise SlotConflict('Requested slot is no longer available', conflicts=result.conflicts)

        hold = BookingHold(
            company_id=company_id,
            location_id=location_id,
            customer_id=customer_id,
            expires_at=now + timedelta(seconds=ttl),
            created_by=created_by,
        )
        for requirement in requirements:
            blocked = requirement.blocked_window
            # One entry per unit of capacity
            units = requirement.quantity if requirement.resource_type_id is not None else 1
            for _ in range(units):
                hold.tentative.append(HoldEntry(
                    start=requirement.window.start,
                    end=requirement.window.end,
                    blocked_start=blocked.start,
                    blocked_end=blocked.end,
                    staff_id=requirement.staff_id,
                    resource_type_id=requirement.resource_type_id,
                ))

        db.session.add(hold)
        db.session.flush()
        current_app.logger.info(
            f"Hold {hold.id} created for customer {customer_id} at location {location_id}, expires {hold.expires_at}"
        )
        return hold

    def release(self, hold_id, company_id):
        """Delete a hold; returns True only when an unexpired hold was released"""
        now = self.clock()
        owned = db.select(BookingHold.id).where(BookingHold.id == hold_id, BookingHold.company_id == company_id)
        HoldEntry.query.filter(HoldEntry.hold_id.in_(owned)).delete(synchronize_session=False)
        # Whoever deletes the row first wins; a converted or already released hold matches nothing
        released = BookingHold.query.filter(
            BookingHold.id == hold_id,
            BookingHold.company_id == company_id,
            BookingHold.expires_at > now,
        ).delete(synchronize_session=False)
        BookingHold.query.filter_by(id=hold_id, company_id=company_id).delete(synchronize_session=False)
        return bool(released)

    def convert(self, hold):
        """Remove a hold as part of the transaction that inserts its appointment"""
        HoldEntry.query.filter_by(hold_id=hold.id).delete(synchronize_session=False)
        converted = BookingHold.query.filter_by(id=hold.id).delete(synchronize_session=False)
        if not converted:
            current_app.logger.info(f"Hold {hold.id} was released before it could be converted")
        return bool(converted)

    def sweep_expired(self, now=None):
        now = now or self.clock()
        expired = db.select(BookingHold.id).where(BookingHold.expires_at <= now)
        HoldEntry.query.filter(HoldEntry.hold_id.in_(expired)).delete(synchronize_session=False)
        count = BookingHold.query.filter(BookingHold.expires_at <= now).delete(synchronize_session=False)
        if count:
            current_app.logger.info(f"Swept {count} expired booking hold(s)")
        return count

    def get_active(self, hold_id, company_id):
        return BookingHold.query.filter(
            BookingHold.id == hold_id,
            BookingHold.company_id == company_id,
            BookingHold.expires_at > self.clock(),
        ).first()

    def list_active(self, company_id, location_id=None):
        query = BookingHold.query.filter(
            BookingHold.company_id == company_id,
            BookingHold.expires_at > self.clock(),
        )
        if location_id is not None:
            query = query.filter(BookingHold.location_id == location_id)
        return query.order_by(BookingHold.expires_at).all()
