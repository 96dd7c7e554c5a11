from datetime import datetime, timedelta

import mailer
from app import app, db, EmailVerification, Member
from conftest import login_member, make_member

EMAIL = 'member@example.com'


def latest_code(email=EMAIL):
    with app.app_context():
        return (EmailVerification.query.filter_by(email=email)
                .order_by(EmailVerification.id.desc()).first())


def send_and_verify(client, email=EMAIL, **extra):
    assert client.post('/api/email/send-code', json={'email': email, **extra}).status_code == 200
    code = latest_code(email).code
    assert client.post('/api/email/verify', json={'email': email, 'code': code}).status_code == 200


def test_send_code_mails_six_digits(client, mails):
    resp = client.post('/api/email/send-code', json={'email': 'Member@Example.com'})
    body = resp.get_json()
    assert resp.status_code == 200
    assert 'code' not in body
    ev = latest_code()
    assert len(ev.code) == 6 and ev.code.isdigit()
    assert ev.code in mails[0]['html']
    assert timedelta(minutes=9) < ev.expires_at - ev.created_at <= timedelta(minutes=10)


def test_send_code_rejects_bad_email(client):
    resp = client.post('/api/email/send-code', json={'email': 'member@example'})
    assert resp.status_code == 400


def test_send_code_rate_limited(client):
    client.post('/api/email/send-code', json={'email': EMAIL})
    resp = client.post('/api/email/send-code', json={'email': EMAIL})
    assert resp.status_code == 429
    assert resp.get_json()['error'] == '驗證碼發送太頻繁，請稍後再試'


def test_send_code_mail_failure(client, monkeypatch):
    monkeypatch.setattr(mailer, 'send_email', lambda *a: False)
    resp = client.post('/api/email/send-code', json={'email': EMAIL})
    assert resp.status_code == 502
    assert latest_code() is None


def test_verify_wrong_code_counts_attempts(client):
    client.post('/api/email/send-code', json={'email': EMAIL})
    ev = latest_code()
    wrong = '000000' if ev.code != '000000' else '111111'
    for _ in range(5):
        resp = client.post('/api/email/verify', json={'email': EMAIL, 'code': wrong})
        assert resp.status_code == 400
        assert resp.get_json()['error'] == '驗證碼無效或已過期，請重新獲取'
    assert latest_code().attempts == 5
    resp = client.post('/api/email/verify', json={'email': EMAIL, 'code': ev.code})
    assert resp.status_code == 400


def test_verify_expired_code(client):
    client.post('/api/email/send-code', json={'email': EMAIL})
    with app.app_context():
        ev = EmailVerification.query.filter_by(email=EMAIL).first()
        ev.expires_at = datetime.now() - timedelta(seconds=1)
        code = ev.code
        db.session.commit()
    resp = client.post('/api/email/verify', json={'email': EMAIL, 'code': code})
    assert resp.status_code == 400


def test_register_new_member(client):
    send_and_verify(client)
    resp = client.post('/api/email/register', json={'email': EMAIL, 'name': '張志明'})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body['is_new'] is True
    assert body['member']['email_verified'] is True
    assert body['member']['name'] == '張志明'
    assert client.get('/api/auth/session').get_json()['logged_in'] is True

    # 驗證紀錄只能使用一次
    again = client.post('/api/email/register', json={'email': EMAIL})
    assert again.status_code == 400


def test_register_requires_verification(client):
    resp = client.post('/api/email/register', json={'email': EMAIL})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == '請先完成 Email 驗證'


def test_register_attaches_email_to_line_member(client):
    mid = make_member(line_user_id='Uline77')
    login_member(client, mid, 'Uline77')
    send_and_verify(client)
    body = client.post('/api/email/register', json={'email': EMAIL}).get_json()
    assert body['is_new'] is False
    assert body['member']['id'] == mid
    assert body['member']['email'] == EMAIL


def test_register_rejects_line_id_not_from_login(client):
    victim = make_member(name='受害者', line_user_id='Uvictim')
    send_and_verify(client, 'attacker@example.com')
    resp = client.post('/api/email/register',
                       json={'email': 'attacker@example.com', 'line_user_id': 'Uvictim'})
    assert resp.status_code == 403
    assert client.get('/api/auth/session').get_json()['logged_in'] is False

    other = make_member(name='另一位', line_user_id='Uother')
    login_member(client, other, 'Uother')
    resp = client.post('/api/email/register',
                       json={'email': 'attacker@example.com', 'line_user_id': 'Uvictim'})
    assert resp.status_code == 403
    with app.app_context():
        assert db.session.get(Member, victim).email is None


def test_send_code_rejects_foreign_line_id(client):
    resp = client.post('/api/email/send-code', json={'email': EMAIL, 'line_user_id': 'Uvictim'})
    assert resp.status_code == 403
    assert latest_code() is None


def test_register_binds_line_to_email_member(client):
    mid = make_member(line_user_id=None, email=EMAIL)
    login_member(client, mid, 'Unew')
    send_and_verify(client)
    body = client.post('/api/email/register',
                       json={'email': EMAIL, 'line_user_id': 'Unew',
                             'line_display_name': '阿明'}).get_json()
    assert body['member']['id'] == mid
    assert body['member']['line_user_id'] == 'Unew'
    assert body['member']['line_display_name'] == '阿明'


def test_exists(client):
    make_member(email=EMAIL)
    assert client.get(f'/api/email/exists?email={EMAIL.upper()}').get_json() == {'exists': True}
    assert client.get('/api/email/exists?email=nobody@example.com').get_json() == {'exists': False}


def test_email_login(client):
    send_and_verify(client, 'ghost@example.com')
    assert client.post('/api/email/login', json={'email': 'ghost@example.com'}).status_code == 404

    mid = make_member(line_user_id=None, email=EMAIL)
    assert client.post('/api/email/login', json={'email': EMAIL}).status_code == 400
    send_and_verify(client)
    body = client.post('/api/email/login', json={'email': EMAIL}).get_json()
    assert body['member']['id'] == mid
    assert client.get('/api/members/me').status_code == 200


def test_link_line_conflict(client):
    make_member(name='已綁定', line_user_id='Utaken')
    mid = make_member(name='信箱會員', line_user_id=None, email=EMAIL)
    login_member(client, mid, 'Utaken')
    send_and_verify(client)
    resp = client.post('/api/email/link-line', json={'email': EMAIL, 'line_user_id': 'Utaken'})
    assert resp.status_code == 409


def test_link_line_requires_line_login(client):
    mid = make_member(line_user_id=None, email=EMAIL)
    send_and_verify(client)
    resp = client.post('/api/email/link-line', json={'email': EMAIL, 'line_user_id': 'Ufree'})
    assert resp.status_code == 403
    assert resp.get_json()['error'] == '請先使用 LINE 登入'

    login_member(client, mid, 'Umine')
    resp = client.post('/api/email/link-line', json={'email': EMAIL, 'line_user_id': 'Ufree'})
    assert resp.status_code == 403
    with app.app_context():
        assert db.session.get(Member, mid).line_user_id is None


def test_link_line(client):
    mid = make_member(line_user_id=None, email=EMAIL)
    login_member(client, mid, 'Ufree')
    send_and_verify(client)
    body = client.post('/api/email/link-line', json={'email': EMAIL}).get_json()
    assert body['success'] is True
    with app.app_context():
        assert db.session.get(Member, mid).line_user_id == 'Ufree'
