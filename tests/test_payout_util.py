from decimal import Decimal

from app.utils.payout_util import (
    adjusted_price, payout_percentage, payout_sessions, summarize_appointment, summarize_therapist,
)


def test_level_percentages():
    assert payout_percentage(2) == Decimal('0.57')
    assert payout_percentage(1) == Decimal('0.50')
    assert payout_percentage(None) == Decimal('0.50')
    assert payout_percentage('2') == Decimal('0.57')


def test_adjusted_price_by_level():
    assert adjusted_price(100, 2) == Decimal('57.00')
    assert str(adjusted_price(100, 2)) == '57.00'
    assert adjusted_price(100, 1) == Decimal('50.00')
    assert adjusted_price(200, 2) == Decimal('114.00')


def test_override_wins_regardless_of_level():
    assert adjusted_price(100, 2, override=0.8) == Decimal('80.00')
    assert adjusted_price(100, 1, override='0.8') == Decimal('80.00')


def test_out_of_range_override_is_ignored():
    assert adjusted_price(100, 2, override=1.5) == Decimal('57.00')
    assert adjusted_price(100, 2, override=0) == Decimal('57.00')
    assert adjusted_price(100, 1, override='nonsense') == Decimal('50.00')


def test_configured_percentages():
    assert payout_percentage(3, percentages={3: '0.65'}) == Decimal('0.65')
    assert payout_percentage(2, percentages={'2': '0.60'}) == Decimal('0.60')
    assert payout_percentage(1, percentages={2: '0.60'}, default='0.45') == Decimal('0.45')


def test_rounding_is_half_up_to_cents():
    assert adjusted_price(Decimal('33.33'), 2) == Decimal('19.00')
    assert adjusted_price(Decimal('0.01'), 1) == Decimal('0.01')


def test_single_session_appointment_pays_on_full_price():
    summary = summarize_appointment({'id': 7, 'price': 200}, level=2)
    assert summary['appointment_id'] == 7
    assert len(summary['sessions']) == 1
    assert summary['sessions'][0]['adjusted_price'] == Decimal('114.00')
    assert summary['total'] == Decimal('114.00')


def test_sessions_share_the_appointment_price():
    sessions = payout_sessions({'price': 300, 'totalSessions': 3, 'sessions': [{}, {}, {}]})
    assert [s['price'] for s in sessions] == [Decimal('100'), Decimal('100'), Decimal('100')]
    assert [s['index'] for s in sessions] == [0, 1, 2]


def test_session_price_beats_share():
    summary = summarize_appointment(
        {'price': 300, 'totalSessions': 3, 'sessions': [{}, {}, {'price': 150}]}, level=1
    )
    assert [s['adjusted_price'] for s in summary['sessions']] == [
        Decimal('50.00'), Decimal('50.00'), Decimal('75.00')
    ]
    assert summary['total'] == Decimal('175.00')


def test_session_override_beats_appointment_override():
    summary = summarize_appointment({
        'price': 100,
        'paymentPercentage': 0.6,
        'totalSessions': 2,
        'sessions': [{'paymentPercentage': 0.9}, {}],
    }, level=2)
    assert summary['payment_percentage'] == Decimal('0.6')
    assert [s['adjusted_price'] for s in summary['sessions']] == [Decimal('45.00'), Decimal('30.00')]
    assert summary['total'] == Decimal('75.00')


def test_therapist_total_is_recomputed_from_current_appointments():
    appointments = [{'id': 1, 'price': 100}, {'id': 2, 'price': 200}]
    before = summarize_therapist(appointments, level=2)
    assert before['total'] == Decimal('171.00')
    assert before['session_count'] == 2

    appointments.append({'id': 3, 'price': 100, 'paymentPercentage': 0.8})
    after = summarize_therapist(appointments, level=2)
    assert after['total'] == Decimal('251.00')
    assert after['level'] == 2


def test_missing_price_pays_nothing():
    assert summarize_appointment({}, level=2)['total'] == Decimal('0.00')


def test_recurring_list_gets_the_main_session_back():
    appointment = {'price': 300, 'totalSessions': 3, 'recurring': ['2024-05-08', '2024-05-15']}

    sessions = payout_sessions(appointment)
    assert [s['index'] for s in sessions] == [0, 1, 2]
    assert [s['date'] for s in sessions] == [None, '2024-05-08', '2024-05-15']
    assert summarize_appointment(appointment, level=2)['total'] == Decimal('171.00')


def test_recurring_list_without_total_counts_the_main_session():
    summary = summarize_appointment({'price': 200, 'recurring': ['2024-05-08']}, level=1)
    assert len(summary['sessions']) == 2
    assert summary['total'] == Decimal('100.00')


def test_non_finite_override_is_ignored():
    assert adjusted_price(100, 2, override='NaN') == Decimal('57.00')
    assert adjusted_price(100, 2, override=Decimal('Infinity')) == Decimal('57.00')
