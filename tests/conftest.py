"""Shared fixtures: an app on a temporary SQLite file, a settable clock and a seeded company."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from flask import g
from flask.testing import FlaskClient

from petcare import create_app, db
from petcare.models import (
    Company, Location, Customer, Pet, User, ResourceType, Resource, ServiceCategory, ServiceItem,
    ServiceItemResource,
)
from petcare.models.user import ROLE_MANAGER, ROLE_GROOMER, ROLE_VETERINARIAN

# A Monday
DAY = datetime(2026, 3, 2)


def at(hour, minute=0, day=DAY):
    return day.replace(hour=hour, minute=minute)


class MutableClock(object):
    """Clock the tests move by hand"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set(self, now):
        self.now = now


@pytest.fixture
def clock():
    return MutableClock(at(8))


@pytest.fixture
def app(tmp_path, clock):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'scheduling.db'}",
        'SCHEDULING_CLOCK': clock,
        'LOCK_TIMEOUT_SECONDS': 2,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


class ActorClient(FlaskClient):
    """Test client that resolves the actor header afresh on every request.

    The app context stays pushed for the whole test, so the user Flask-Login
    caches on `g` would otherwise leak from one request into the next.
    """

    def open(self, *args, **kwargs):
        g.pop('_login_user', None)
        return super().open(*args, **kwargs)


@pytest.fixture
def client(app):
    app.test_client_class = ActorClient
    return app.test_client()


@pytest.fixture
def engine(app):
    return app.extensions['scheduling']


@pytest.fixture
def seed(app):
    """Happy Paws with one location, two groomers, a manager, two tables and one dog tub."""
    company = Company('Happy Paws')
    rival = Company('Rival Grooming')
    db.session.add_all([company, rival])
    db.session.flush()

    location = Location(company.id, 'Downtown')
    rival_location = Location(rival.id, 'Uptown')
    db.session.add_all([location, rival_location])
    db.session.flush()

    grooming = ServiceCategory(company.id, 'Full Groom')
    vet_care = ServiceCategory(company.id, 'Vet Check')
    db.session.add_all([grooming, vet_care])
    db.session.flush()

    s1 = User(company.id, 's1@happypaws.test', 'Sam One', role=ROLE_GROOMER)
    s2 = User(company.id, 's2@happypaws.test', 'Sky Two', role=ROLE_GROOMER)
    manager = User(company.id, 'manager@happypaws.test', 'Morgan Manager', role=ROLE_MANAGER)
    vet = User(company.id, 'vet@happypaws.test', 'Val Vet', role=ROLE_VETERINARIAN)
    vet.service_categories.append(vet_care)
    outsider = User(rival.id, 'boss@rival.test', 'Rory Rival', role=ROLE_MANAGER)
    db.session.add_all([s1, s2, manager, vet, outsider])

    table_type = ResourceType(company.id, 'Grooming Table')
    tub_type = ResourceType(company.id, 'Bathing Tub')
    db.session.add_all([table_type, tub_type])
    db.session.flush()

    db.session.add_all([
        Resource(company.id, location.id, table_type.id, 'Table 1'),
        Resource(company.id, location.id, table_type.id, 'Table 2'),
        Resource(company.id, location.id, tub_type.id, 'Tub 1', species='dog'),
    ])

    # 45 minutes with the groomer, the first 30 on a table
    groom_item = ServiceItem(company.id, grooming.id, 45, label='Full groom, medium', size='M', price=55)
    groom_item.required_resources.append(ServiceItemResource(table_type.id, 30))
    # 30 minutes in the tub
    bath_item = ServiceItem(company.id, grooming.id, 30, label='Bath only', price=25)
    bath_item.required_resources.append(ServiceItemResource(tub_type.id, 30))
    vet_item = ServiceItem(company.id, vet_care.id, 20, label='Wellness check', price=40)
    db.session.add_all([groom_item, bath_item, vet_item])
    db.session.flush()

    customer = Customer(company.id, 'Casey Customer', email='casey@example.test')
    db.session.add(customer)
    db.session.flush()
    rex = Pet(company.id, customer.id, 'Rex', species='dog', size='M')
    tom = Pet(company.id, customer.id, 'Tom', species='cat')
    other_customer = Customer(company.id, 'Dana Other')
    db.session.add_all([rex, tom, other_customer])
    db.session.commit()

    return SimpleNamespace(
        company=company,
        rival=rival,
        location=location,
        rival_location=rival_location,
        grooming=grooming,
        vet_care=vet_care,
        s1=s1,
        s2=s2,
        manager=manager,
        vet=vet,
        outsider=outsider,
        table_type=table_type,
        tub_type=tub_type,
        groom_item=groom_item,
        bath_item=bath_item,
        vet_item=vet_item,
        customer=customer,
        other_customer=other_customer,
        rex=rex,
        tom=tom,
    )


@pytest.fixture
def booking(seed):
    """Build appointment request data for the seeded groom item"""
    def build(start, staff=None, end=None, item=None, pet=None, **extra):
        item = item or seed.groom_item
        data = {
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'pet_id': (pet or seed.rex).id,
            'service_id': item.service_category_id,
            'service_item_id': item.id,
            'start': start,
        }
        if staff is not None:
            data['staff_id'] = staff.id
        if end is not None:
            data['end'] = end
        data.update(extra)
        return data
    return build


def headers(user):
    return {'X-Actor-Id': str(user.id)}
