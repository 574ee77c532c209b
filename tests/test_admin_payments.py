from decimal import Decimal

import pytest

from app.models.appointment_models import Appointment
from app.models.payment_models import TherapistPayment
from conftest import auth_headers


@pytest.fixture
def payable(patient, therapist, make_appointment):
    """Completed, validated and paid appointment of a level 2 therapist."""
    return make_appointment(
        patient, therapist,
        status='completed', payment_status='completed', therapist_validated=True,
        checkout_session_id='cs_paid', stripe_verified=True, price=Decimal('200.00'),
    )


def test_pending_payouts_grouped_by_therapist(
    client, admin_headers, patient, therapist, junior_therapist, payable, make_appointment
):
    balance_paid = make_appointment(
        patient, junior_therapist,
        status='completed', payment_status='completed', therapist_validated=True,
        is_balance=True, price=Decimal('100.00'),
    )
    # Not payable: rejected, unvalidated or without a resolved payment
    make_appointment(patient, therapist, status='completed', therapist_validated=True,
                     stripe_verified=True, checkout_session_id='cs_x', is_payout_rejected=True)
    make_appointment(patient, therapist, status='completed', stripe_verified=True, checkout_session_id='cs_y')
    make_appointment(patient, therapist, status='completed', therapist_validated=True)

    response = client.get('/api/admin/payments/pending', headers=admin_headers)
    data = response.get_json()

    assert response.status_code == 200
    by_therapist = {group['therapist_id']: group for group in data['therapists']}
    assert by_therapist[therapist.id]['total'] == '114.00'
    assert [a['id'] for a in by_therapist[therapist.id]['appointments']] == [payable.id]
    assert by_therapist[junior_therapist.id]['total'] == '50.00'
    assert by_therapist[junior_therapist.id]['appointments'][0]['id'] == balance_paid.id
    assert data['total'] == '164.00'


def test_legacy_completed_status_is_payable(client, admin_headers, patient, therapist, make_appointment):
    make_appointment(
        patient, therapist, status='completed_validated', therapist_validated=True,
        checkout_session_id='cs_old', stripe_verified=True,
    )
    data = client.get('/api/admin/payments/pending', headers=admin_headers).get_json()
    assert data['total'] == '114.00'


def test_available_payouts(client, admin_headers, patient, therapist, payable, make_appointment):
    upcoming = make_appointment(patient, therapist, status='confirmed', payment_status='completed',
                                price=Decimal('100.00'))
    make_appointment(patient, therapist, status='cancelled', payment_status='completed')

    data = client.get('/api/admin/payments/available', headers=admin_headers).get_json()

    assert [a['id'] for a in data['therapists'][0]['appointments']] == [upcoming.id]
    assert data['total'] == '57.00'


def test_mark_as_paid_records_payout(client, db, admin, admin_headers, therapist, payable):
    response = client.put(f'/api/admin/payments/{payable.id}/mark-as-paid', headers=admin_headers)
    data = response.get_json()

    assert response.status_code == 200
    assert data['payment']['amount'] == '114.00'
    assert data['payment']['appointment_ids'] == [payable.id]
    assert data['appointment']['therapist_paid'] is True
    assert data['appointment']['reconciliation']['payout']['label'] == 'Paid Out'

    payout = TherapistPayment.query.one()
    assert payout.paid_by_id == admin.id
    assert payout.payment_percentage == Decimal('0.57')

    again = client.put(f'/api/admin/payments/{payable.id}/mark-as-paid', headers=admin_headers)
    assert again.status_code == 400

    pending = client.get('/api/admin/payments/pending', headers=admin_headers).get_json()
    assert pending['therapists'] == []

    history = client.get(f'/api/admin/payments/history?therapist={therapist.id}', headers=admin_headers).get_json()
    assert history['pagination']['total'] == 1
    assert history['payments'][0]['therapist_name'] == 'Jordan Lee'


def test_mark_as_paid_requires_resolved_payment(client, admin_headers, patient, therapist, make_appointment):
    unpaid = make_appointment(patient, therapist, status='completed', therapist_validated=True)

    response = client.put(f'/api/admin/payments/{unpaid.id}/mark-as-paid', headers=admin_headers)

    assert response.status_code == 400
    assert 'No Payment' in response.get_json()['error']


def test_reject_payout(client, db, admin_headers, therapist, payable):
    url = f'/api/admin/payments/{payable.id}/reject-payout'
    assert client.put(url, headers=admin_headers, json={'note': ''}).status_code == 400

    response = client.put(url, headers=admin_headers, json={'note': 'Session notes missing'})
    assert response.status_code == 200
    assert db.session.get(Appointment, payable.id).is_payout_rejected is True

    rejected = client.get('/api/therapist/payments/rejected', headers=auth_headers(therapist)).get_json()
    assert rejected['appointments'][0]['note'] == 'Session notes missing'

    blocked = client.put(f'/api/admin/payments/{payable.id}/mark-as-paid', headers=admin_headers)
    assert blocked.status_code == 400


def test_payout_routes_are_admin_only(client, therapist):
    response = client.get('/api/admin/payments/pending', headers=auth_headers(therapist))
    assert response.status_code == 403
