from flask_login import UserMixin
from petcare import db, login_manager
from petcare.scheduling.clock import utcnow

# Staff roles
ROLE_MANAGER = 'manager'
ROLE_GROOMER = 'groomer'
ROLE_VETERINARIAN = 'veterinarian'
ROLE_VET_TECHNICIAN = 'vet_technician'
ROLE_TRAINER = 'trainer'
ROLE_RECEPTIONIST = 'receptionist'
STAFF_ROLES = (
    ROLE_MANAGER,
    ROLE_GROOMER,
    ROLE_VETERINARIAN,
    ROLE_VET_TECHNICIAN,
    ROLE_TRAINER,
    ROLE_RECEPTIONIST,
)

# Header set by the upstream gateway once it has authenticated the caller
ACTOR_HEADER = 'X-Actor-Id'

staff_service_categories = db.Table(
    'staff_service_categories',
    db.Column('user_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
    db.Column('service_category_id', db.Integer, db.ForeignKey('service_categories.id'), primary_key=True),
)


class User(UserMixin, db.Model):
    """A staff member of a company; also the acting user behind every request"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    full_name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), default=ROLE_GROOMER)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    service_categories = db.relationship('ServiceCategory', secondary=staff_service_categories, lazy='selectin')
    schedules = db.relationship('StaffSchedule', backref='staff', lazy='dynamic')
    time_off = db.relationship('TimeOff', backref='staff', lazy='dynamic')

    def __init__(self, company_id, email, full_name, role=ROLE_GROOMER, is_active=True):
        self.company_id = company_id
        self.email = email
        self.full_name = full_name
        self.role = role
        self.is_active = is_active

    def is_manager(self):
        return self.role == ROLE_MANAGER

    def can_perform(self, service_category_id):
        # No categories assigned means the staff member can perform every service
        if not self.service_categories:
            return True
        return any(category.id == service_category_id for category in self.service_categories)

    def to_dict(self):
        return {'id': self.id, 'full_name': self.full_name, 'role': self.role}

    def __repr__(self):
        return f'<User {self.email}>'


@login_manager.user_loader
def load_user(id):
    return db.session.get(User, int(id))


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the actor forwarded by the gateway; credentials are never checked here"""
    actor_id = request.headers.get(ACTOR_HEADER, '')
    if not actor_id.isdigit():
        return None
    user = db.session.get(User, int(actor_id))
    if user is None or not user.is_active:
        return None
    return user
