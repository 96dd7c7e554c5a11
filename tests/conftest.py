import os
import sys
import tempfile
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_DB_DIR = tempfile.mkdtemp(prefix='member-system-test-')
os.environ['DATABASE_URL'] = f'sqlite:///{os.path.join(_DB_DIR, "test.sqlite3")}'
os.environ.setdefault('SECRET_KEY', 'test-secret')
for _key in ('SHOP_NOTIFICATION_EMAIL', 'ADMIN_EMAIL', 'ADMIN_PASSWORD', 'FEATURE_MEMBER_EDIT'):
    os.environ.pop(_key, None)

import app as app_module  # noqa: E402
import line_api  # noqa: E402
import mailer  # noqa: E402
from app import app, db, seed, init_new_member, Member, Service  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    app.config['TESTING'] = True
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()
        seed()
    yield
    with app.app_context():
        db.session.remove()


@pytest.fixture(autouse=True)
def pushed(monkeypatch):
    sent = []

    def fake_push(token, to, messages, timeout=10):
        sent.append({'token': token, 'to': to, 'messages': messages})

    monkeypatch.setattr(line_api, 'push_message', fake_push)
    monkeypatch.setattr(app_module, 'LINE_CHANNEL_ACCESS_TOKEN', 'test-token')
    return sent


@pytest.fixture(autouse=True)
def mails(monkeypatch):
    sent = []

    def fake_send(to_addr, subject, body_html):
        sent.append({'to': to_addr, 'subject': subject, 'html': body_html})
        return True

    monkeypatch.setattr(mailer, 'send_email', fake_send)
    return sent


@pytest.fixture()
def client():
    return app.test_client()


@pytest.fixture()
def admin_client():
    c = app.test_client()
    resp = c.post('/admin/api/login', json={'email': 'admin@example.com', 'password': 'admin123'})
    assert resp.status_code == 200
    return c


def make_member(name='王小明', line_user_id='U0001', email=None, phone=None):
    with app.app_context():
        m = Member(name=name, line_user_id=line_user_id, email=email, phone=phone)
        db.session.add(m)
        db.session.flush()
        init_new_member(m)
        db.session.commit()
        return m.id


def login_member(client, member_id, line_user_id=None, expires_in=timedelta(days=1)):
    with client.session_transaction() as sess:
        sess['member_session'] = {
            'member_id': member_id,
            'line_user_id': line_user_id,
            'access_token': None,
            'expires_at': (datetime.now() + expires_in).timestamp(),
        }


@pytest.fixture()
def member_id():
    return make_member()


@pytest.fixture()
def member_client(member_id):
    c = app.test_client()
    login_member(c, member_id, 'U0001')
    return c


def service_id(name='螢幕保護貼'):
    with app.app_context():
        return Service.query.filter_by(name=name).first().id


def option_id(service_name, option_name):
    with app.app_context():
        s = Service.query.filter_by(name=service_name).first()
        return next(o.id for o in s.options if o.name == option_name)


def next_open_date(offset=1):
    """今天之後第 offset 個營業日（週一至週六）"""
    d = date.today()
    found = 0
    while True:
        d += timedelta(days=1)
        if d.weekday() != 6:
            found += 1
            if found == offset:
                return d.strftime('%Y-%m-%d')


def next_sunday():
    d = date.today() + timedelta(days=1)
    while d.weekday() != 6:
        d += timedelta(days=1)
    return d.strftime('%Y-%m-%d')
