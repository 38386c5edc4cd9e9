from petcare import db
from petcare.scheduling.clock import utcnow

# Species a pet (and a resource tag) can carry
SPECIES_DOG = 'dog'
SPECIES_CAT = 'cat'
SPECIES_OTHER = 'other'
SPECIES_ALL = 'all'
PET_SPECIES = (SPECIES_DOG, SPECIES_CAT, SPECIES_OTHER)


class Customer(db.Model):
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    pets = db.relationship('Pet', backref='customer', lazy='dynamic')

    def __init__(self, company_id, full_name, email=None, phone=None):
        self.company_id = company_id
        self.full_name = full_name
        self.email = email
        self.phone = phone

    def to_dict(self):
        return {'id': self.id, 'full_name': self.full_name, 'email': self.email, 'phone': self.phone}

    def __repr__(self):
        return f'<Customer {self.full_name}>'


class Pet(db.Model):
    __tablename__ = 'pets'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    name = db.Column(db.String(80), nullable=False)
    species = db.Column(db.String(20), nullable=False, default=SPECIES_DOG)
    size = db.Column(db.String(5), nullable=True)  # S, M, L, XL
    coat_type = db.Column(db.String(20), nullable=True)

    def __init__(self, company_id, customer_id, name, species=SPECIES_DOG, size=None, coat_type=None):
        self.company_id = company_id
        self.customer_id = customer_id
        self.name = name
        self.species = species
        self.size = size
        self.coat_type = coat_type

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'species': self.species,
            'size': self.size,
            'coat_type': self.coat_type,
        }

    def __repr__(self):
        return f'<Pet {self.name}>'
