import app as app_module
from app import app, db, Member, Wallet, PointTransaction, recharge_wallet
from conftest import make_member


def test_me_requires_login(client):
    resp = client.get('/api/members/me')
    assert resp.status_code == 401
    assert resp.get_json()['success'] is False


def test_get_and_update_me(member_client):
    me = member_client.get('/api/members/me').get_json()['member']
    assert me['name'] == '王小明'
    resp = member_client.put('/api/members/me', json={
        'name': '王大明', 'phone': '0912345678', 'gender': 'male', 'birthday': '1990-01-31',
    })
    body = resp.get_json()
    assert resp.status_code == 200
    assert body['member']['name'] == '王大明'
    assert body['member']['phone'] == '0912345678'
    assert body['member']['gender_label'] == '男性'


def test_update_me_validation(member_client):
    resp = member_client.put('/api/members/me', json={'phone': '12345'})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'phone'
    assert member_client.put('/api/members/me', json={'name': 'A'}).status_code == 400
    assert member_client.put('/api/members/me', json={'gender': 'x'}).status_code == 400


def test_update_email_conflict_and_reset_verified(member_client, member_id):
    make_member(name='另一位', line_user_id='U0002', email='taken@example.com')
    resp = member_client.put('/api/members/me', json={'email': 'taken@example.com'})
    assert resp.status_code == 409

    with app.app_context():
        m = db.session.get(Member, member_id)
        m.email, m.email_verified = 'old@example.com', True
        db.session.commit()
    body = member_client.put('/api/members/me', json={'email': 'New@Example.com'}).get_json()
    assert body['member']['email'] == 'new@example.com'
    assert body['member']['email_verified'] is False


def test_member_edit_switch(member_client, monkeypatch):
    monkeypatch.setitem(app_module.FEATURES, 'allowMemberEdit', False)
    assert member_client.put('/api/members/me', json={'name': '王大明'}).status_code == 403


def test_admin_requires_login(client):
    assert client.get('/admin/api/members').status_code == 401
    assert client.get('/admin/api/stats').status_code == 401


def test_admin_list_and_search(admin_client):
    make_member(name='陳美玲', line_user_id='U1', email='meiling@example.com', phone='0911111111')
    make_member(name='Lee Wang', line_user_id=None, phone='0922222222')
    make_member(name='林志豪', line_user_id='U3')

    body = admin_client.get('/admin/api/members?limit=2').get_json()
    assert body['total'] == 3
    assert len(body['members']) == 2

    names = [m['name'] for m in admin_client.get('/admin/api/members/search?q=lee').get_json()['members']]
    assert names == ['Lee Wang']
    by_phone = admin_client.get('/admin/api/members/search?q=0911').get_json()['members']
    assert by_phone[0]['name'] == '陳美玲'
    by_email = admin_client.get('/admin/api/members/search?q=MEILING').get_json()['members']
    assert len(by_email) == 1


def test_admin_crud(admin_client):
    resp = admin_client.post('/admin/api/members', json={
        'name': '黃小華', 'phone': '0933333333', 'email': 'hua@example.com', 'notes': 'VIP',
    })
    assert resp.status_code == 201
    mid = resp.get_json()['member']['id']

    detail = admin_client.get(f'/admin/api/members/{mid}').get_json()['member']
    assert detail['notes'] == 'VIP'
    assert detail['points']['balance'] == 50
    assert detail['recent_bookings'] == []

    upd = admin_client.put(f'/admin/api/members/{mid}', json={'is_active': False, 'notes': ''})
    assert upd.get_json()['member']['is_active'] is False
    assert upd.get_json()['member']['notes'] is None

    dup = admin_client.post('/admin/api/members', json={'name': '重複', 'email': 'hua@example.com'})
    assert dup.status_code == 409


def test_admin_delete_cascades(admin_client):
    mid = make_member()
    with app.app_context():
        recharge_wallet(mid, 300)
        db.session.commit()
    assert admin_client.delete(f'/admin/api/members/{mid}').status_code == 200
    with app.app_context():
        assert db.session.get(Member, mid) is None
        assert Wallet.query.count() == 0
        assert PointTransaction.query.count() == 0
    assert admin_client.get(f'/admin/api/members/{mid}').status_code == 404


def test_admin_member_placeholder_id(admin_client):
    resp = admin_client.get('/admin/api/members/0')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '會員 ID 格式錯誤'


def test_admin_stats(admin_client):
    make_member(name='甲會員', line_user_id='U1')
    make_member(name='乙會員', line_user_id=None)
    make_member(name='丙會員', line_user_id='U3')
    stats = admin_client.get('/admin/api/stats').get_json()['stats']
    assert stats['total_members'] == 3
    assert stats['line_bound_members'] == 2
    assert stats['binding_rate'] == '67%'
    assert len(stats['recent_members']) == 3
    assert stats['total_points'] == 150
    assert stats['total_wallet_balance'] == 0
