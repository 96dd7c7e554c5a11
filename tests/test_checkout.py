import pytest
from sqlalchemy.orm import Query

from app import app, db, Booking, PointTransaction, Transaction, WalletTransaction, recharge_wallet
from conftest import login_member, make_member, next_open_date, service_id


@pytest.fixture()
def booking_id(member_client):
    resp = member_client.post('/api/bookings', json={
        'service_id': service_id(), 'booking_date': next_open_date(), 'booking_time': '14:00',
    })
    return resp.get_json()['booking']['id']


def pay(admin_client, member_id, amount, **extra):
    payload = {'member_id': member_id, 'amount': amount, 'payment_method_code': 'cash'}
    payload.update(extra)
    return admin_client.post('/admin/api/transactions', json=payload)


def booking_state(bid):
    with app.app_context():
        b = db.session.get(Booking, bid)
        return b.payment_status, float(b.paid_amount), b.transaction_id


def test_payment_methods(client):
    codes = [p['code'] for p in client.get('/api/payment-methods').get_json()['payment_methods']]
    assert codes == ['cash', 'credit_card', 'line_pay', 'transfer', 'wallet']


def test_payment_settles_booking_and_earns_points(admin_client, member_id, booking_id, pushed):
    resp = pay(admin_client, member_id, 500, booking_id=booking_id)
    tx = resp.get_json()['transaction']
    assert resp.status_code == 201
    assert tx['transaction_number'].startswith('TX')
    assert tx['payment_method_name'] == '現金'
    assert tx['points_earned'] == 5
    assert tx['bookings']['id'] == booking_id
    assert booking_state(booking_id) == ('paid', 500.0, tx['id'])

    points = admin_client.get(f'/admin/api/members/{member_id}').get_json()['member']['points']
    assert points['balance'] == 55
    assert any('積分異動' in p['messages'][0]['text'] for p in pushed)


def test_partial_payment(admin_client, member_id, booking_id):
    pay(admin_client, member_id, 200, booking_id=booking_id)
    assert booking_state(booking_id)[:2] == ('partial', 200.0)


def test_payment_by_line_user_id_ignores_placeholder_member(admin_client, member_id):
    resp = pay(admin_client, '0', 150, line_user_id='U0001', booking_id='null')
    assert resp.status_code == 201
    assert resp.get_json()['transaction']['member_id'] == member_id
    assert resp.get_json()['transaction']['booking_id'] is None


def test_payment_validation(admin_client, member_id, booking_id):
    assert pay(admin_client, member_id, 0).status_code == 400
    assert pay(admin_client, None, 100).get_json()['error'] == '缺少會員資訊'
    resp = pay(admin_client, member_id, 100, payment_method_code='bitcoin')
    assert resp.get_json()['error'] == '付款方式不存在或已停用'

    stranger = make_member(name='陌生人', line_user_id='U0009')
    resp = pay(admin_client, stranger, 100, booking_id=booking_id)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '預約不屬於此會員'
    with app.app_context():
        assert Transaction.query.count() == 0


def test_wallet_portion(admin_client, member_id):
    with app.app_context():
        recharge_wallet(member_id, 1000)
        db.session.commit()
    resp = pay(admin_client, member_id, 400, payment_method_code='wallet',
               use_wallet_payment=True, wallet_payment_amount=300)
    assert resp.get_json()['transaction']['wallet_amount'] == 300.0
    wallet = admin_client.get(f'/admin/api/members/{member_id}').get_json()['member']['wallet']
    assert wallet['balance'] == 700.0
    assert wallet['total_spent'] == 300.0

    too_much = pay(admin_client, member_id, 100, use_wallet_payment=True, wallet_payment_amount=200)
    assert too_much.status_code == 400


def test_wallet_portion_insufficient_rolls_back(admin_client, member_id):
    resp = pay(admin_client, member_id, 100, use_wallet_payment=True)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '儲值金餘額不足'
    with app.app_context():
        assert Transaction.query.count() == 0


def test_refunds(admin_client, member_id, booking_id):
    tid = pay(admin_client, member_id, 500, booking_id=booking_id).get_json()['transaction']['id']
    refund = {'member_id': member_id, 'original_transaction_id': tid, 'amount': 200}
    resp = admin_client.post('/admin/api/transactions/refund', json=refund)
    body = resp.get_json()['transaction']
    assert resp.status_code == 201
    assert body['transaction_type'] == 'refund'
    assert body['payment_method_code'] == 'cash'
    assert body['original_transaction_id'] == tid
    assert booking_state(booking_id)[:2] == ('partial', 300.0)

    over = admin_client.post('/admin/api/transactions/refund', json={**refund, 'amount': 301})
    assert over.status_code == 400
    assert over.get_json()['error'] == '退款金額超過可退款金額'

    admin_client.post('/admin/api/transactions/refund', json={**refund, 'amount': 300})
    assert booking_state(booking_id)[:2] == ('refunded', 0.0)


def test_refund_to_wallet(admin_client, member_id):
    tid = pay(admin_client, member_id, 500).get_json()['transaction']['id']
    admin_client.post('/admin/api/transactions/refund', json={
        'member_id': member_id, 'original_transaction_id': tid, 'amount': 120,
        'payment_method_code': 'wallet',
    })
    wallet = admin_client.get(f'/admin/api/members/{member_id}').get_json()['member']['wallet']
    assert wallet['balance'] == 120.0


def test_refund_other_members_transaction(admin_client, member_id):
    tid = pay(admin_client, member_id, 500).get_json()['transaction']['id']
    stranger = make_member(name='陌生人', line_user_id='U0009')
    resp = admin_client.post('/admin/api/transactions/refund', json={
        'member_id': stranger, 'original_transaction_id': tid, 'amount': 100,
    })
    assert resp.status_code == 404


def test_delete_transaction(admin_client, member_id, booking_id):
    tid = pay(admin_client, member_id, 500, booking_id=booking_id).get_json()['transaction']['id']
    admin_client.post('/admin/api/transactions/refund',
                      json={'member_id': member_id, 'original_transaction_id': tid, 'amount': 50})
    resp = admin_client.delete(f'/admin/api/transactions/{tid}')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '此交易已有退款記錄，無法刪除'

    tid2 = pay(admin_client, member_id, 100).get_json()['transaction']['id']
    assert admin_client.delete(f'/admin/api/transactions/{tid2}').status_code == 200
    assert admin_client.get(f'/admin/api/transactions/{tid2}').status_code == 404


def test_delete_transaction_recomputes_booking(admin_client, member_id, booking_id):
    tid = pay(admin_client, member_id, 500, booking_id=booking_id).get_json()['transaction']['id']
    admin_client.delete(f'/admin/api/transactions/{tid}')
    assert booking_state(booking_id) == ('unpaid', 0.0, None)


def test_update_transaction(admin_client, member_id):
    tid = pay(admin_client, member_id, 500).get_json()['transaction']['id']
    resp = admin_client.put(f'/admin/api/transactions/{tid}',
                            json={'payment_method_code': 'line_pay', 'receipt_number': 'AB-12345678'})
    tx = resp.get_json()['transaction']
    assert tx['payment_method_name'] == 'LINE Pay'
    assert tx['receipt_number'] == 'AB-12345678'
    assert admin_client.put(f'/admin/api/transactions/{tid}',
                            json={'payment_method_code': 'gold'}).status_code == 400


def balances(admin_client, member_id):
    m = admin_client.get(f'/admin/api/members/{member_id}').get_json()['member']
    return m['wallet']['balance'], m['points']['balance']


def test_cancel_transaction_reverses_wallet_and_points(admin_client, member_id, booking_id):
    with app.app_context():
        recharge_wallet(member_id, 1000)
        db.session.commit()
    tid = pay(admin_client, member_id, 500, booking_id=booking_id, payment_method_code='wallet',
              use_wallet_payment=True).get_json()['transaction']['id']
    assert balances(admin_client, member_id) == (500.0, 55)

    resp = admin_client.put(f'/admin/api/transactions/{tid}', json={'status': 'cancelled'})
    assert resp.status_code == 200
    assert balances(admin_client, member_id) == (1000.0, 50)
    assert booking_state(booking_id)[:2] == ('unpaid', 0.0)
    with app.app_context():
        assert WalletTransaction.query.filter_by(reference_id=tid, transaction_type='adjustment').count() == 1
        assert PointTransaction.query.filter_by(reference_id=tid, transaction_type='adjustment').count() == 1

    # 重複送出相同狀態不會再沖銷
    admin_client.put(f'/admin/api/transactions/{tid}', json={'status': 'cancelled'})
    assert balances(admin_client, member_id) == (1000.0, 50)

    admin_client.put(f'/admin/api/transactions/{tid}', json={'status': 'completed'})
    assert balances(admin_client, member_id) == (500.0, 55)
    assert booking_state(booking_id)[:2] == ('paid', 500.0)


def test_transaction_lists(admin_client, member_id, client):
    other = make_member(name='陌生人', line_user_id='U0009')
    pay(admin_client, member_id, 500)
    pay(admin_client, other, 300, payment_method_code='credit_card')

    body = admin_client.get('/admin/api/transactions?payment_method_code=credit_card').get_json()
    assert body['total'] == 1
    assert body['transactions'][0]['members']['name'] == '陌生人'
    assert admin_client.get(f'/admin/api/transactions?member_id={member_id}').get_json()['total'] == 1
    assert admin_client.get('/admin/api/transactions?date_from=2000-01-01').get_json()['total'] == 2
    assert admin_client.get('/admin/api/transactions?date_to=2000-01-01').get_json()['total'] == 0

    login_member(client, member_id, 'U0001')
    mine = client.get('/api/transactions').get_json()['transactions']
    assert [t['amount'] for t in mine] == [500.0]
    assert client.get('/api/transactions?type=refund').get_json()['transactions'] == []


def test_refund_locks_original_transaction(admin_client, member_id, monkeypatch):
    tid = pay(admin_client, member_id, 500).get_json()['transaction']['id']
    locked = []
    with_for_update = Query.with_for_update

    def recording(self, *args, **kwargs):
        locked.append(self.column_descriptions[0]['entity'].__name__)
        return with_for_update(self, *args, **kwargs)

    monkeypatch.setattr(Query, 'with_for_update', recording)
    resp = admin_client.post('/admin/api/transactions/refund',
                             json={'member_id': member_id, 'original_transaction_id': tid, 'amount': 100})
    assert resp.status_code == 201
    assert 'Transaction' in locked
