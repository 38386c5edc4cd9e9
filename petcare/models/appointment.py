from petcare import db
from petcare.scheduling.clock import utcnow

# Appointment status constants
STATUS_SCHEDULED = 'scheduled'
STATUS_CHECKED_IN = 'checked_in'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELED = 'canceled'
STATUS_NO_SHOW = 'no_show'

STATUSES = (
    STATUS_SCHEDULED,
    STATUS_CHECKED_IN,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_CANCELED,
    STATUS_NO_SHOW,
)

# Every status an appointment can move to from its current one.
# Terminal statuses map to an empty set.
ALLOWED_TRANSITIONS = {
    STATUS_SCHEDULED: frozenset({STATUS_CHECKED_IN, STATUS_CANCELED, STATUS_NO_SHOW}),
    STATUS_CHECKED_IN: frozenset({STATUS_IN_PROGRESS, STATUS_CANCELED, STATUS_NO_SHOW}),
    STATUS_IN_PROGRESS: frozenset({STATUS_COMPLETED, STATUS_CANCELED, STATUS_NO_SHOW}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELED: frozenset(),
    STATUS_NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
ACTIVE_STATUSES = tuple(status for status in STATUSES if status not in TERMINAL_STATUSES)

# Timestamp column stamped when an appointment enters a status
STATUS_TIMESTAMP_FIELDS = {
    STATUS_CHECKED_IN: 'checked_in_at',
    STATUS_IN_PROGRESS: 'started_at',
    STATUS_COMPLETED: 'completed_at',
    STATUS_CANCELED: 'canceled_at',
    STATUS_NO_SHOW: 'no_show_at',
}

CANCEL_REASONS = (
    'customer_requested',
    'staff_unavailable',
    'resource_unavailable',
    'weather_conditions',
    'pet_health_issue',
    'business_closed',
    'double_booking_error',
    'system_error',
    'other',
)
RESCHEDULE_REASONS = CANCEL_REASONS
NO_SHOW_REASONS = (
    'customer_forgot',
    'customer_emergency',
    'transportation_issue',
    'weather_conditions',
    'pet_health_issue',
    'customer_unreachable',
    'other',
)

# Statuses that need a typed reason, with the enumeration that reason comes from
REASONS_BY_STATUS = {
    STATUS_CANCELED: CANCEL_REASONS,
    STATUS_NO_SHOW: NO_SHOW_REASONS,
}

SOURCE_ONLINE = 'online'
SOURCES = (SOURCE_ONLINE, 'phone', 'walk_in', 'social')


def _iso(value):
    return value.isoformat() if value else None


class Appointment(db.Model):
    __tablename__ = 'appointments'
    __table_args__ = (
        db.Index('ix_appointments_staff_window', 'company_id', 'location_id', 'staff_id', 'blocked_start', 'blocked_end'),
        db.Index('ix_appointments_location_start', 'company_id', 'location_id', 'start', 'status'),
        db.CheckConstraint('start < "end"', name='ck_appointments_window'),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    pet_id = db.Column(db.Integer, db.ForeignKey('pets.id'), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey('service_categories.id'), nullable=False)
    service_item_id = db.Column(db.Integer, db.ForeignKey('service_items.id'), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    start = db.Column(db.DateTime, nullable=False)
    end = db.Column(db.DateTime, nullable=False)
    # Staff occupancy including buffers
    blocked_start = db.Column(db.DateTime, nullable=False)
    blocked_end = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=STATUS_SCHEDULED)
    notes = db.Column(db.String(500), nullable=True)
    source = db.Column(db.String(20), nullable=False, default=SOURCE_ONLINE)
    google_calendar_event_id = db.Column(db.String(255), nullable=True)

    # Audit block
    scheduled_by_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    canceled_by_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    cancel_reason = db.Column(db.String(50), nullable=True)
    no_show_reason = db.Column(db.String(50), nullable=True)
    reschedule_reason = db.Column(db.String(50), nullable=True)
    rescheduled_from_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=True)
    rescheduled_to_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=True)

    # Status change timestamps
    checked_in_at = db.Column(db.DateTime, nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)
    no_show_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    location = db.relationship('Location')
    customer = db.relationship('Customer')
    pet = db.relationship('Pet')
    service = db.relationship('ServiceCategory')
    service_item = db.relationship('ServiceItem')
    staff = db.relationship('User', foreign_keys=[staff_id])
    reservations = db.relationship(
        'ResourceReservation',
        backref='appointment',
        lazy='selectin',
        cascade='all, delete-orphan',
        order_by='ResourceReservation.id',
    )

    def __init__(self, company_id, location_id, customer_id, pet_id, service_id, service_item_id,
                 start, end, staff_id=None, notes=None, source=SOURCE_ONLINE, scheduled_by_user_id=None):
        self.company_id = company_id
        self.location_id = location_id
        self.customer_id = customer_id
        self.pet_id = pet_id
        self.service_id = service_id
        self.service_item_id = service_item_id
        self.staff_id = staff_id
        self.start = start
        self.end = end
        self.blocked_start = start
        self.blocked_end = end
        self.notes = notes
        self.source = source
        self.scheduled_by_user_id = scheduled_by_user_id
        self.status = STATUS_SCHEDULED

    def is_active(self):
        return self.status not in TERMINAL_STATUSES

    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, status):
        return status in ALLOWED_TRANSITIONS.get(self.status, ())

    def to_dict(self, resolve=False):
        data = {
            'id': self.id,
            'company_id': self.company_id,
            'location_id': self.location_id,
            'customer_id': self.customer_id,
            'pet_id': self.pet_id,
            'service_id': self.service_id,
            'service_item_id': self.service_item_id,
            'staff_id': self.staff_id,
            'start': _iso(self.start),
            'end': _iso(self.end),
            'status': self.status,
            'notes': self.notes,
            'source': self.source,
            'google_calendar_event_id': self.google_calendar_event_id,
            'audit': {
                'scheduled_by_user_id': self.scheduled_by_user_id,
                'canceled_by_user_id': self.canceled_by_user_id,
                'cancel_reason': self.cancel_reason,
                'no_show_reason': self.no_show_reason,
                'reschedule_reason': self.reschedule_reason,
            },
            'rescheduled_from_id': self.rescheduled_from_id,
            'rescheduled_to_id': self.rescheduled_to_id,
            'checked_in_at': _iso(self.checked_in_at),
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'canceled_at': _iso(self.canceled_at),
            'no_show_at': _iso(self.no_show_at),
            'reservations': [reservation.to_dict() for reservation in self.reservations],
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if resolve:
            # Resolved references for external consumers (calendar sync, broadcast)
            data['location'] = self.location.to_dict() if self.location else None
            data['customer'] = self.customer.to_dict() if self.customer else None
            data['pet'] = self.pet.to_dict() if self.pet else None
            data['service'] = {'id': self.service.id, 'name': self.service.name} if self.service else None
            data['service_item'] = {
                'id': self.service_item.id,
                'label': self.service_item.label,
                'size': self.service_item.size,
                'coat_type': self.service_item.coat_type,
                'price': float(self.service_item.price or 0),
            } if self.service_item else None
            data['staff'] = self.staff.to_dict() if self.staff else None
        return data

    def __repr__(self):
        return f'<Appointment {self.id}: {self.start} - {self.end} ({self.status})>'
