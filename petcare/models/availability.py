from petcare import db
from petcare.scheduling.clock import utcnow

# Days of the week constants (0 = Monday, 6 = Sunday)
MONDAY = 0
TUESDAY = 1
WEDNESDAY = 2
THURSDAY = 3
FRIDAY = 4
SATURDAY = 5
SUNDAY = 6


class BusinessHours(db.Model):
    __tablename__ = 'business_hours'
    __table_args__ = (
        db.UniqueConstraint('location_id', 'day_of_week', name='uq_business_hours_location_day'),
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0-6 (Monday-Sunday)
    open_time = db.Column(db.Time, nullable=False)
    close_time = db.Column(db.Time, nullable=False)
    is_closed = db.Column(db.Boolean, default=False)

    def __init__(self, location_id, day_of_week, open_time, close_time, is_closed=False):
        self.location_id = location_id
        self.day_of_week = day_of_week
        self.open_time = open_time
        self.close_time = close_time
        self.is_closed = is_closed

    @classmethod
    def get_business_hours(cls, location_id):
        """Returns a dictionary of business hours by day of week"""
        hours = cls.query.filter_by(location_id=location_id).all()
        result = {}
        for hour in hours:
            result[hour.day_of_week] = hour
        return result

    def __repr__(self):
        if self.is_closed:
            return f'<BusinessHours: Day {self.day_of_week} - CLOSED>'
        return f'<BusinessHours: Day {self.day_of_week} - {self.open_time} to {self.close_time}>'


class StaffSchedule(db.Model):
    """Working hours of one staff member at one location on one weekday"""
    __tablename__ = 'staff_schedules'
    __table_args__ = (
        db.UniqueConstraint('staff_id', 'location_id', 'day_of_week', name='uq_staff_schedule_day'),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0-6 (Monday-Sunday)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    # Relationships
    breaks = db.relationship(
        'StaffBreak',
        backref='schedule',
        lazy='selectin',
        cascade='all, delete-orphan',
        order_by='StaffBreak.start_time',
    )

    def __init__(self, company_id, staff_id, location_id, day_of_week, start_time, end_time, breaks=None):
        self.company_id = company_id
        self.staff_id = staff_id
        self.location_id = location_id
        self.day_of_week = day_of_week
        self.start_time = start_time
        self.end_time = end_time
        for break_start, break_end in breaks or ():
            self.breaks.append(StaffBreak(break_start, break_end))

    def __repr__(self):
        return f'<StaffSchedule: staff {self.staff_id} day {self.day_of_week} {self.start_time}-{self.end_time}>'


class StaffBreak(db.Model):
    """A break inside a staff schedule day; the staff member is unavailable for it"""
    __tablename__ = 'staff_breaks'
    __table_args__ = (
        db.CheckConstraint('start_time < end_time', name='ck_staff_breaks_window'),
    )

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey('staff_schedules.id'), nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    def __init__(self, start_time, end_time):
        self.start_time = start_time
        self.end_time = end_time

    def __repr__(self):
        return f'<StaffBreak: {self.start_time}-{self.end_time}>'


class TimeOff(db.Model):
    __tablename__ = 'time_off'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    start = db.Column(db.DateTime, nullable=False)
    end = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __init__(self, company_id, staff_id, start, end, reason=None):
        self.company_id = company_id
        self.staff_id = staff_id
        self.start = start
        self.end = end
        self.reason = reason

    def __repr__(self):
        return f'<TimeOff: {self.start} to {self.end}>'
