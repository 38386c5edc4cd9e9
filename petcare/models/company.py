from petcare import db
from petcare.scheduling.clock import utcnow


class Company(db.Model):
    __tablename__ = 'companies'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    locations = db.relationship('Location', backref='company', lazy='dynamic')

    def __init__(self, name, timezone='UTC', active=True):
        self.name = name
        self.timezone = timezone
        self.active = active

    def __repr__(self):
        return f'<Company {self.name}>'


class Location(db.Model):
    __tablename__ = 'locations'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    timezone = db.Column(db.String(64), nullable=True)  # Falls back to the company timezone
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __init__(self, company_id, name, timezone=None, active=True):
        self.company_id = company_id
        self.name = name
        self.timezone = timezone
        self.active = active

    def get_timezone(self):
        if self.timezone:
            return self.timezone
        return self.company.timezone if self.company else 'UTC'

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'timezone': self.get_timezone()}

    def __repr__(self):
        return f'<Location {self.name}>'
