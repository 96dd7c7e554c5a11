from decimal import Decimal

import pytest

from app import (
    app, db, PointRule, WalletTransaction, calculate_points, format_amount, format_points,
    format_point_transaction_type, format_wallet_transaction_type,
)


def test_display_helpers():
    assert format_amount(Decimal('1234')) == 'NT$ 1,234.00'
    assert format_amount(None) == 'NT$ 0'
    assert format_points(1234) == '1,234 點'
    assert format_wallet_transaction_type('recharge') == '儲值'
    assert format_point_transaction_type('bonus') == '獎勵'
    assert format_point_transaction_type('mystery') == 'mystery'


def test_calculate_points():
    with app.app_context():
        assert calculate_points(250) == 2
        assert calculate_points('99.99') == 0
        assert calculate_points(0) == 0
        PointRule.query.filter_by(rule_type='spend_rate').one().is_active = False
        db.session.commit()
        assert calculate_points(1000) == 0


def test_calculate_endpoint(client):
    assert client.get('/api/points/calculate?amount=1050').get_json()['points'] == 10
    assert client.get('/api/points/calculate?amount=abc').status_code == 400


def test_point_rules(client):
    rules = client.get('/api/point-rules').get_json()['rules']
    assert {r['rule_type'] for r in rules} == {'spend_rate', 'signup_bonus'}


def test_member_views(member_client):
    assert member_client.get('/api/wallet').get_json()['wallet'] is None
    points = member_client.get('/api/points').get_json()['points']
    assert points['balance'] == 50
    assert points['balance_display'] == '50 點'
    rows = member_client.get('/api/points/transactions').get_json()['transactions']
    assert rows[0]['transaction_type'] == 'bonus'
    assert rows[0]['type_label'] == '獎勵'


def test_recharge_and_pay(admin_client, member_id, member_client, pushed):
    resp = admin_client.post('/admin/api/wallet/recharge',
                             json={'member_id': member_id, 'amount': 1000, 'description': '現金儲值'})
    body = resp.get_json()
    assert body['new_balance'] == 1000.0
    assert body['transaction']['balance_before'] == 0.0
    assert '儲值金異動' in pushed[-1]['messages'][0]['text']

    body = admin_client.post('/admin/api/wallet/pay', json={'member_id': member_id, 'amount': 250.5}).get_json()
    assert body['new_balance'] == 749.5
    assert body['transaction']['amount'] == -250.5
    assert body['transaction']['reference_type'] == 'transaction'

    wallet = member_client.get('/api/wallet').get_json()['wallet']
    assert wallet['balance'] == 749.5
    assert wallet['total_recharged'] == 1000.0
    assert wallet['balance_display'] == 'NT$ 749.50'

    history = member_client.get('/api/wallet/transactions').get_json()['transactions']
    assert len(history) == 2
    for row in history:
        assert row['balance_after'] == pytest.approx(row['balance_before'] + row['amount'])


def test_wallet_errors(admin_client, member_id):
    resp = admin_client.post('/admin/api/wallet/pay', json={'member_id': member_id, 'amount': 1})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '儲值金餘額不足'
    resp = admin_client.post('/admin/api/wallet/recharge', json={'member_id': member_id, 'amount': -5})
    assert resp.get_json()['error'] == '儲值金額必須大於 0'
    resp = admin_client.post('/admin/api/wallet/recharge', json={'member_id': member_id, 'amount': '0.001'})
    assert resp.status_code == 400
    assert admin_client.post('/admin/api/wallet/recharge',
                             json={'member_id': '0', 'amount': 5}).status_code == 400
    with app.app_context():
        assert WalletTransaction.query.count() == 0


def test_points_earn_and_spend(admin_client, member_id):
    body = admin_client.post('/admin/api/points/earn', json={'member_id': member_id, 'points': 30}).get_json()
    assert body['new_balance'] == 80
    body = admin_client.post('/admin/api/points/spend', json={'member_id': member_id, 'points': 80}).get_json()
    assert body['new_balance'] == 0
    assert body['transaction']['points'] == -80

    resp = admin_client.post('/admin/api/points/spend', json={'member_id': member_id, 'points': 1})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '積分不足'
    assert admin_client.post('/admin/api/points/earn',
                             json={'member_id': member_id, 'points': 1.5}).status_code == 400


def test_admin_account_lists(admin_client, member_id):
    admin_client.post('/admin/api/wallet/recharge', json={'member_id': member_id, 'amount': 10})
    wallets = admin_client.get('/admin/api/wallets').get_json()['wallets']
    assert wallets[0]['members']['name'] == '王小明'
    points = admin_client.get('/admin/api/points').get_json()['points']
    assert points[0]['balance'] == 50


def test_wallet_notification_toggle(admin_client, member_id, member_client, pushed):
    member_client.put('/api/notifications/settings', json={'wallet_notification_enabled': False})
    admin_client.post('/admin/api/wallet/recharge', json={'member_id': member_id, 'amount': 10})
    assert pushed == []
