"""Tests for the JSON API blueprints."""

import pytest

from conftest import headers
from petcare import db
from petcare.models import Appointment, BookingHold


@pytest.fixture
def payload(seed):
    """JSON body booking the groom item for Rex with S1 at 09:00"""
    def build(**extra):
        data = {
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'pet_id': seed.rex.id,
            'service_id': seed.grooming.id,
            'service_item_id': seed.groom_item.id,
            'staff_id': seed.s1.id,
            'start': '2026-03-02T09:00:00',
        }
        data.update(extra)
        return data
    return build


class TestActor:
    """Tests for actor resolution."""

    def test_missing_actor_is_unauthorized(self, client, seed, payload):
        response = client.post('/api/appointments', json=payload())

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'UNAUTHORIZED'

    def test_unknown_actor_is_unauthorized(self, client, seed):
        response = client.get('/api/appointments', headers={'X-Actor-Id': '9999'})
        assert response.status_code == 401

    def test_inactive_actor_is_unauthorized(self, client, seed):
        seed.s2.is_active = False
        db.session.commit()

        response = client.get('/api/appointments', headers=headers(seed.s2))
        assert response.status_code == 401

    def test_sweep_is_for_managers(self, client, seed):
        assert client.post('/api/holds/sweep', headers=headers(seed.s1)).status_code == 403
        response = client.post('/api/holds/sweep', headers=headers(seed.manager))
        assert response.status_code == 200
        assert response.get_json() == {'swept': 0}


class TestAppointmentRoutes:
    """Tests for /api/appointments endpoints."""

    def test_create_appointment(self, client, seed, payload):
        response = client.post('/api/appointments', json=payload(notes='First visit'), headers=headers(seed.manager))

        assert response.status_code == 201
        appointment = response.get_json()['appointment']
        assert appointment['status'] == 'scheduled'
        assert appointment['start'] == '2026-03-02T09:00:00'
        assert appointment['end'] == '2026-03-02T09:45:00'
        assert appointment['notes'] == 'First visit'
        assert appointment['audit']['scheduled_by_user_id'] == seed.manager.id
        assert len(appointment['reservations']) == 1

    def test_utc_offset_is_accepted(self, client, seed, payload):
        response = client.post(
            '/api/appointments',
            json=payload(start='2026-03-02T10:00:00+01:00'),
            headers=headers(seed.manager),
        )

        assert response.status_code == 201
        assert response.get_json()['appointment']['start'] == '2026-03-02T09:00:00'

    def test_conflict_shape(self, client, seed, payload):
        client.post('/api/appointments', json=payload(), headers=headers(seed.manager))

        response = client.post(
            '/api/appointments', json=payload(start='2026-03-02T09:30:00'), headers=headers(seed.manager),
        )

        assert response.status_code == 409
        error = response.get_json()['error']
        assert error['code'] == 'BOOKING_CONFLICT'
        assert error['details']['conflicts'][0]['kind'] == 'staff'
        assert error['details']['conflicts'][0]['staff_id'] == seed.s1.id

    def test_missing_fields_are_a_validation_error(self, client, seed):
        response = client.post(
            '/api/appointments', json={'location_id': seed.location.id}, headers=headers(seed.manager),
        )

        assert response.status_code == 400
        error = response.get_json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert 'customer_id' in error['details']['fields']
        assert 'start' in error['details']['fields']

    def test_invalid_location(self, client, seed, payload):
        response = client.post(
            '/api/appointments',
            json=payload(location_id=seed.rival_location.id),
            headers=headers(seed.manager),
        )

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_LOCATION'

    def test_get_and_list(self, client, seed, payload):
        created = client.post('/api/appointments', json=payload(), headers=headers(seed.manager)).get_json()
        client.post(
            '/api/appointments',
            json=payload(staff_id=seed.s2.id, start='2026-03-02T11:00:00'),
            headers=headers(seed.manager),
        )
        appointment_id = created['appointment']['id']

        detail = client.get(f'/api/appointments/{appointment_id}', headers=headers(seed.s1)).get_json()
        assert detail['appointment']['pet']['name'] == 'Rex'
        assert detail['appointment']['staff']['full_name'] == 'Sam One'

        everything = client.get('/api/appointments', headers=headers(seed.s1)).get_json()
        assert len(everything['appointments']) == 2

        for_s2 = client.get(f'/api/appointments?staff_id={seed.s2.id}', headers=headers(seed.s1)).get_json()
        assert [a['staff_id'] for a in for_s2['appointments']] == [seed.s2.id]

        morning = client.get(
            '/api/appointments?start_from=2026-03-02T08:00:00&start_to=2026-03-02T10:00:00',
            headers=headers(seed.s1),
        ).get_json()
        assert [a['id'] for a in morning['appointments']] == [appointment_id]

    def test_unknown_status_filter(self, client, seed):
        response = client.get('/api/appointments?status=lost', headers=headers(seed.manager))
        assert response.status_code == 400

    def test_missing_appointment(self, client, seed):
        response = client.get('/api/appointments/404', headers=headers(seed.manager))

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_FOUND'

    def test_patch_notes(self, client, seed, payload):
        created = client.post('/api/appointments', json=payload(), headers=headers(seed.manager)).get_json()
        appointment_id = created['appointment']['id']

        response = client.patch(
            f'/api/appointments/{appointment_id}',
            json={'notes': 'Nervous around dryers'},
            headers=headers(seed.s1),
        )

        assert response.status_code == 200
        assert response.get_json()['appointment']['notes'] == 'Nervous around dryers'
        assert response.get_json()['appointment']['start'] == '2026-03-02T09:00:00'

    def test_status_flow(self, client, seed, payload):
        created = client.post('/api/appointments', json=payload(), headers=headers(seed.manager)).get_json()
        url = f"/api/appointments/{created['appointment']['id']}/status"

        missing = client.post(url, json={'status': 'canceled'}, headers=headers(seed.manager))
        assert missing.status_code == 400
        assert missing.get_json()['error']['code'] == 'MISSING_REASON'

        skipped = client.post(url, json={'status': 'completed'}, headers=headers(seed.manager))
        assert skipped.status_code == 400
        assert skipped.get_json()['error']['code'] == 'INVALID_STATUS_TRANSITION'

        checked_in = client.post(url, json={'status': 'checked_in'}, headers=headers(seed.manager))
        assert checked_in.status_code == 200
        assert checked_in.get_json()['appointment']['checked_in_at'] == '2026-03-02T08:00:00'

    def test_reschedule(self, client, seed, payload):
        created = client.post('/api/appointments', json=payload(), headers=headers(seed.manager)).get_json()
        appointment_id = created['appointment']['id']

        response = client.post(
            f'/api/appointments/{appointment_id}/reschedule',
            json={'start': '2026-03-02T15:00:00', 'reason': 'customer_requested'},
            headers=headers(seed.manager),
        )

        assert response.status_code == 201
        body = response.get_json()
        assert body['previous']['status'] == 'canceled'
        assert body['previous']['rescheduled_to_id'] == body['appointment']['id']
        assert body['appointment']['rescheduled_from_id'] == appointment_id
        assert body['appointment']['start'] == '2026-03-02T15:00:00'
        assert Appointment.query.count() == 2


class TestAvailabilityAndHoldRoutes:
    """Tests for /api/availability/check and /api/holds endpoints."""

    def test_check_service_item(self, client, seed, payload):
        client.post('/api/appointments', json=payload(), headers=headers(seed.manager))

        busy = client.post('/api/availability/check', json={
            'location_id': seed.location.id,
            'service_item_id': seed.groom_item.id,
            'staff_id': seed.s1.id,
            'start': '2026-03-02T09:15:00',
        }, headers=headers(seed.manager)).get_json()
        free = client.post('/api/availability/check', json={
            'location_id': seed.location.id,
            'service_item_id': seed.groom_item.id,
            'staff_id': seed.s2.id,
            'start': '2026-03-02T09:15:00',
        }, headers=headers(seed.manager)).get_json()

        assert busy['available'] is False
        assert busy['conflicts'][0]['reason'] == 'overlapping_appointment'
        assert free == {'available': True, 'conflicts': []}

    def test_check_explicit_requirements(self, client, seed):
        response = client.post('/api/availability/check', json={
            'location_id': seed.location.id,
            'species': 'cat',
            'requirements': [
                {'resource_type_id': seed.tub_type.id, 'start': '2026-03-02T09:00:00', 'end': '2026-03-02T09:30:00'},
                {'resource_type_id': seed.table_type.id, 'quantity': 2,
                 'start': '2026-03-02T09:00:00', 'end': '2026-03-02T09:30:00'},
            ],
        }, headers=headers(seed.manager))

        body = response.get_json()
        assert response.status_code == 200
        assert [(c['index'], c['reason']) for c in body['conflicts']] == [(0, 'no_resources')]

    def test_check_needs_something_to_check(self, client, seed):
        response = client.post(
            '/api/availability/check', json={'location_id': seed.location.id}, headers=headers(seed.manager),
        )
        assert response.status_code == 400

    def test_hold_lifecycle(self, client, seed):
        body = {
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'created_by': 'assistant',
            'tentative': [
                {'resource_type_id': seed.tub_type.id, 'start': '2026-03-02T09:00:00', 'end': '2026-03-02T09:30:00'},
            ],
        }

        created = client.post('/api/holds', json=body, headers=headers(seed.manager))
        assert created.status_code == 201
        hold = created.get_json()['hold']
        assert hold['created_by'] == 'assistant'
        assert hold['expires_at'] == '2026-03-02T08:05:00'

        competing = client.post('/api/holds', json=body, headers=headers(seed.manager))
        assert competing.status_code == 409
        assert competing.get_json()['error']['code'] == 'SLOT_CONFLICT'

        listed = client.get('/api/holds', headers=headers(seed.s1)).get_json()
        assert [h['id'] for h in listed['holds']] == [hold['id']]

        released = client.delete(f"/api/holds/{hold['id']}", headers=headers(seed.manager))
        assert released.get_json() == {'released': True}
        again = client.delete(f"/api/holds/{hold['id']}", headers=headers(seed.manager))
        assert again.get_json() == {'released': False}
        assert BookingHold.query.count() == 0

    def test_book_against_a_hold(self, client, seed, payload):
        hold = client.post('/api/holds', json={
            'location_id': seed.location.id,
            'customer_id': seed.customer.id,
            'service_item_id': seed.groom_item.id,
            'staff_id': seed.s1.id,
            'start': '2026-03-02T09:00:00',
        }, headers=headers(seed.manager)).get_json()['hold']

        response = client.post(
            '/api/appointments', json=payload(hold_id=hold['id']), headers=headers(seed.manager),
        )

        assert response.status_code == 201
        assert BookingHold.query.count() == 0
