from petcare import db
from petcare.scheduling.clock import utcnow

HOLD_CREATED_BY = ('web', 'operator', 'assistant')


def _iso(value):
    return value.isoformat() if value else None


class ResourceReservation(db.Model):
    """One unit of resource-type capacity claimed by an appointment.

    Counts toward capacity only while its appointment is in a non-terminal
    status. `blocked_start`/`blocked_end` include the requirement buffers.
    """
    __tablename__ = 'resource_reservations'
    __table_args__ = (
        db.Index('ix_reservations_type_window', 'company_id', 'location_id', 'resource_type_id', 'blocked_start', 'blocked_end'),
        db.Index('ix_reservations_resource_window', 'company_id', 'location_id', 'resource_id', 'blocked_start'),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False, index=True)
    resource_type_id = db.Column(db.Integer, db.ForeignKey('resource_types.id'), nullable=False)
    resource_id = db.Column(db.Integer, db.ForeignKey('resources.id'), nullable=True)
    start = db.Column(db.DateTime, nullable=False)
    end = db.Column(db.DateTime, nullable=False)
    blocked_start = db.Column(db.DateTime, nullable=False)
    blocked_end = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __init__(self, company_id, location_id, resource_type_id, start, end, blocked_start, blocked_end,
                 resource_id=None):
        self.company_id = company_id
        self.location_id = location_id
        self.resource_type_id = resource_type_id
        self.resource_id = resource_id
        self.start = start
        self.end = end
        self.blocked_start = blocked_start
        self.blocked_end = blocked_end

    def to_dict(self):
        return {
            'id': self.id,
            'resource_type_id': self.resource_type_id,
            'resource_id': self.resource_id,
            'start': _iso(self.start),
            'end': _iso(self.end),
        }

    def __repr__(self):
        return f'<ResourceReservation type={self.resource_type_id} resource={self.resource_id} {self.start}-{self.end}>'


class BookingHold(db.Model):
    """A tentative, time-boxed claim made while a customer finishes booking"""
    __tablename__ = 'booking_holds'
    __table_args__ = (
        db.Index('ix_booking_holds_expiry', 'company_id', 'expires_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    created_by = db.Column(db.String(20), nullable=False, default='web')
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    tentative = db.relationship(
        'HoldEntry',
        backref='hold',
        lazy='selectin',
        cascade='all, delete-orphan',
        order_by='HoldEntry.id',
    )

    def __init__(self, company_id, location_id, customer_id, expires_at, created_by='web'):
        self.company_id = company_id
        self.location_id = location_id
        self.customer_id = customer_id
        self.expires_at = expires_at
        self.created_by = created_by

    def is_expired(self, now):
        return now >= self.expires_at

    def to_dict(self):
        return {
            'id': self.id,
            'company_id': self.company_id,
            'location_id': self.location_id,
            'customer_id': self.customer_id,
            'created_by': self.created_by,
            'expires_at': _iso(self.expires_at),
            'tentative': [entry.to_dict() for entry in self.tentative],
        }

    def __repr__(self):
        return f'<BookingHold {self.id} expires {self.expires_at}>'


class HoldEntry(db.Model):
    """One tentative unit of a hold: a staff member or one resource of a type"""
    __tablename__ = 'hold_entries'
    __table_args__ = (
        db.Index('ix_hold_entries_type_window', 'resource_type_id', 'blocked_start', 'blocked_end'),
        db.Index('ix_hold_entries_staff_window', 'staff_id', 'blocked_start', 'blocked_end'),
    )

    id = db.Column(db.Integer, primary_key=True)
    hold_id = db.Column(db.Integer, db.ForeignKey('booking_holds.id'), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resource_type_id = db.Column(db.Integer, db.ForeignKey('resource_types.id'), nullable=True)
    start = db.Column(db.DateTime, nullable=False)
    end = db.Column(db.DateTime, nullable=False)
    blocked_start = db.Column(db.DateTime, nullable=False)
    blocked_end = db.Column(db.DateTime, nullable=False)

    def __init__(self, start, end, blocked_start=None, blocked_end=None, staff_id=None, resource_type_id=None):
        self.staff_id = staff_id
        self.resource_type_id = resource_type_id
        self.start = start
        self.end = end
        self.blocked_start = blocked_start or start
        self.blocked_end = blocked_end or end

    def to_dict(self):
        return {
            'staff_id': self.staff_id,
            'resource_type_id': self.resource_type_id,
            'start': _iso(self.start),
            'end': _iso(self.end),
        }

    def __repr__(self):
        return f'<HoldEntry staff={self.staff_id} type={self.resource_type_id} {self.start}-{self.end}>'


class SchedulingLock(db.Model):
    """Row locked with SELECT ... FOR UPDATE while a reservation is checked and written"""
    __tablename__ = 'scheduling_locks'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __init__(self, key):
        self.key = key

    def __repr__(self):
        return f'<SchedulingLock {self.key}>'
