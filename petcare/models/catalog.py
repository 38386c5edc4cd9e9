from petcare import db
from petcare.models.customer import SPECIES_ALL
from petcare.scheduling.clock import utcnow


class ResourceType(db.Model):
    """A category of interchangeable resources, e.g. 'Grooming Table'"""
    __tablename__ = 'resource_types'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    resources = db.relationship('Resource', backref='resource_type', lazy='dynamic')

    def __init__(self, company_id, name, description=None, active=True):
        self.company_id = company_id
        self.name = name
        self.description = description
        self.active = active

    def __repr__(self):
        return f'<ResourceType {self.name}>'


class Resource(db.Model):
    """A bookable physical unit (a table, a tub, a crate) at one location"""
    __tablename__ = 'resources'
    __table_args__ = (
        db.Index('ix_resources_lookup', 'company_id', 'location_id', 'resource_type_id', 'active'),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False)
    resource_type_id = db.Column(db.Integer, db.ForeignKey('resource_types.id'), nullable=False)
    label = db.Column(db.String(50), nullable=False)
    species = db.Column(db.String(50), nullable=False, default=SPECIES_ALL)  # Comma-separated tags
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __init__(self, company_id, location_id, resource_type_id, label, species=SPECIES_ALL, active=True):
        self.company_id = company_id
        self.location_id = location_id
        self.resource_type_id = resource_type_id
        self.label = label
        self.species = ','.join(species) if isinstance(species, (list, tuple)) else species
        self.active = active

    def species_tags(self):
        return [tag.strip() for tag in (self.species or '').split(',') if tag.strip()]

    def serves_species(self, species):
        tags = self.species_tags()
        return SPECIES_ALL in tags or species in tags

    def __repr__(self):
        return f'<Resource {self.label}>'


class ServiceCategory(db.Model):
    """A bookable service, e.g. 'Full Groom'; variants live in ServiceItem"""
    __tablename__ = 'service_categories'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    items = db.relationship('ServiceItem', backref='service', lazy='dynamic')

    def __init__(self, company_id, name, description=None, active=True):
        self.company_id = company_id
        self.name = name
        self.description = description
        self.active = active

    def __repr__(self):
        return f'<ServiceCategory {self.name}>'


class ServiceItem(db.Model):
    """A bookable variant of a service with its duration and resource needs"""
    __tablename__ = 'service_items'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False, index=True)
    service_category_id = db.Column(db.Integer, db.ForeignKey('service_categories.id'), nullable=False, index=True)
    label = db.Column(db.String(50), nullable=True)
    size = db.Column(db.String(5), nullable=False, default='all')
    coat_type = db.Column(db.String(20), nullable=False, default='all')
    duration_minutes = db.Column(db.Integer, nullable=False)  # 10 to 480
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    active = db.Column(db.Boolean, default=True)

    # Staff cleanup/setup time around the appointment
    buffer_before_minutes = db.Column(db.Integer, nullable=False, default=0)
    buffer_after_minutes = db.Column(db.Integer, nullable=False, default=0)

    # Relationships
    required_resources = db.relationship(
        'ServiceItemResource',
        backref='service_item',
        lazy='selectin',
        cascade='all, delete-orphan',
        order_by='ServiceItemResource.id',
    )

    def __init__(self, company_id, service_category_id, duration_minutes, label=None, size='all',
                 coat_type='all', price=0, buffer_before_minutes=0, buffer_after_minutes=0, active=True):
        self.company_id = company_id
        self.service_category_id = service_category_id
        self.duration_minutes = duration_minutes
        self.label = label
        self.size = size
        self.coat_type = coat_type
        self.price = price
        self.buffer_before_minutes = buffer_before_minutes
        self.buffer_after_minutes = buffer_after_minutes
        self.active = active

    def __repr__(self):
        return f'<ServiceItem {self.label or self.id}: {self.duration_minutes} min>'


class ServiceItemResource(db.Model):
    """One resource-type requirement of a service item.

    The resource is needed for `duration_minutes` starting `offset_minutes`
    after the appointment start, so a bath step can hold the tub for only
    part of the visit.
    """
    __tablename__ = 'service_item_resources'

    id = db.Column(db.Integer, primary_key=True)
    service_item_id = db.Column(db.Integer, db.ForeignKey('service_items.id'), nullable=False, index=True)
    resource_type_id = db.Column(db.Integer, db.ForeignKey('resource_types.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    duration_minutes = db.Column(db.Integer, nullable=False)
    offset_minutes = db.Column(db.Integer, nullable=False, default=0)
    buffer_before_minutes = db.Column(db.Integer, nullable=False, default=0)
    buffer_after_minutes = db.Column(db.Integer, nullable=False, default=0)

    def __init__(self, resource_type_id, duration_minutes, quantity=1, offset_minutes=0,
                 buffer_before_minutes=0, buffer_after_minutes=0):
        self.resource_type_id = resource_type_id
        self.duration_minutes = duration_minutes
        self.quantity = quantity
        self.offset_minutes = offset_minutes
        self.buffer_before_minutes = buffer_before_minutes
        self.buffer_after_minutes = buffer_after_minutes

    def __repr__(self):
        return f'<ServiceItemResource type={self.resource_type_id} x{self.quantity}>'
