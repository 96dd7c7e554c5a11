# -*- coding: utf-8 -*-
import os
import secrets
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from uuid import uuid4

from flask import Flask, request, jsonify, session
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from sqlalchemy import func, or_
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash

import line_api
import mailer
from sanitize import (
    ValidationError, GENDERS, NAME_MIN_LENGTH, NAME_MAX_LENGTH, PHONE_MESSAGE, EMAIL_MESSAGE,
    PHONE_PATTERN, EMAIL_PATTERN,
    build_booking_params, clean_text, clean_uuid, require_uuid, is_valid_email,
    normalize_date, normalize_time, parse_amount, parse_points, parse_paging,
    validate_birthday, validate_email, validate_gender, validate_member_name, validate_phone,
)

DEBUG = os.environ.get('DEBUG', '').strip().lower() in {'1', 'true', 'yes'}

logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'member-system-dev-key')
app.json.ensure_ascii = False

# 資料庫：優先用環境變數 DATABASE_URL（PostgreSQL），否則本地 SQLite
DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///member_system.db')
if DATABASE_URL.startswith('postgres://'):
    DATABASE_URL = DATABASE_URL.replace('postgres://', 'postgresql+psycopg://', 1)
elif DATABASE_URL.startswith('postgresql://') and '+' not in DATABASE_URL.split('://')[0]:
    DATABASE_URL = DATABASE_URL.replace('postgresql://', 'postgresql+psycopg://', 1)
app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

SESSION_EXPIRY = timedelta(days=7)
app.permanent_session_lifetime = SESSION_EXPIRY
MEMBER_SESSION_KEY = 'member_session'
ADMIN_SESSION_KEY  = 'admin_id'
LINE_STATE_KEY     = 'line_login_state'

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
CORS(app, supports_credentials=True,
     origins=[o.strip() for o in CORS_ORIGINS.split(',')] if CORS_ORIGINS != '*' else '*')
db = SQLAlchemy(app)

ADMIN_EMAIL    = os.environ.get('ADMIN_EMAIL', 'admin@example.com')
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'admin123')
SHOP_NAME      = os.environ.get('SHOP_NAME', '手機貼膜專門店')

# ── LINE ───────────────────────────────────────
LINE_CHANNEL_ID           = os.environ.get('LINE_CHANNEL_ID', '')
LINE_CHANNEL_SECRET       = os.environ.get('LINE_CHANNEL_SECRET', '')
LINE_CHANNEL_ACCESS_TOKEN = os.environ.get('LINE_CHANNEL_ACCESS_TOKEN', '')
LINE_LOGIN_SCOPE          = os.environ.get('LINE_LOGIN_SCOPE', line_api.DEFAULT_SCOPE)
APP_BASE_URL              = os.environ.get('APP_BASE_URL', 'http://localhost:5000')
LINE_CALLBACK_PATH        = os.environ.get('LINE_CALLBACK_PATH', '/auth-callback.html')


def _flag(name, default=True):
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in {'1', 'true', 'yes', 'on'}


FEATURES = {
    'enableLineLogin': _flag('FEATURE_LINE_LOGIN'),
    'allowMemberEdit': _flag('FEATURE_MEMBER_EDIT'),
    'showBirthday':    _flag('FEATURE_SHOW_BIRTHDAY'),
    'showGender':      _flag('FEATURE_SHOW_GENDER'),
}

VERIFICATION_EXPIRY_MINUTES = 10
VERIFICATION_RESEND_SECONDS = 60
VERIFICATION_MAX_ATTEMPTS   = 5
VERIFICATION_FRESH_MINUTES  = 30

BOOKING_STATUSES        = ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')
ACTIVE_BOOKING_STATUSES = ('pending', 'confirmed')
TRANSACTION_STATUSES    = ('completed', 'cancelled')

WALLET_TRANSACTION_LABELS = {
    'recharge':   '儲值',
    'payment':    '付款',
    'refund':     '退款',
    'adjustment': '調整',
}
POINT_TRANSACTION_LABELS = {
    'earn':       '獲得',
    'spend':      '使用',
    'expire':     '過期',
    'adjustment': '調整',
    'bonus':      '獎勵',
}
GENDER_LABELS = {
    'male': '男性',
    'female': '女性',
    'other': '其他',
    'prefer_not_to_say': '不願透露',
}

# 通知類型 -> 會員通知設定欄位（不在表內的類型一律發送）
NOTIFICATION_TOGGLES = {
    'booking_reminder':  'booking_reminder_enabled',
    'birthday_greeting': 'birthday_greeting_enabled',
    'wallet_change':     'wallet_notification_enabled',
    'points_change':     'points_notification_enabled',
    'promotion':         'promotion_enabled',
}

CENT = Decimal('0.01')


class ApiError(Exception):
    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


def _uuid():
    return str(uuid4())


def _fmt_dt(value, fmt='%Y-%m-%d %H:%M'):
    return value.strftime(fmt) if value else ''


def _money(value):
    return float(value or 0)


def format_amount(amount):
    if amount is None:
        return 'NT$ 0'
    return f'NT$ {Decimal(str(amount)):,.2f}'


def format_points(points):
    if points is None:
        return '0 點'
    return f'{int(points):,} 點'


def format_wallet_transaction_type(t):
    return WALLET_TRANSACTION_LABELS.get(t, t)


def format_point_transaction_type(t):
    return POINT_TRANSACTION_LABELS.get(t, t)


def format_gender(g):
    return GENDER_LABELS.get(g, '未設定')


# ─────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────

class Member(db.Model):
    __tablename__ = 'members'
    id                = db.Column(db.String(36), primary_key=True, default=_uuid)
    line_user_id      = db.Column(db.String(100), unique=True)
    line_display_name = db.Column(db.String(100))
    name              = db.Column(db.String(50), nullable=False)
    phone             = db.Column(db.String(20))
    email             = db.Column(db.String(255), unique=True)
    email_verified    = db.Column(db.Boolean, default=False)
    birthday          = db.Column(db.String(10))   # YYYY-MM-DD
    gender            = db.Column(db.String(20))
    avatar_url        = db.Column(db.String(500))
    notes             = db.Column(db.Text)
    is_active         = db.Column(db.Boolean, default=True)
    created_at        = db.Column(db.DateTime, default=datetime.now)
    updated_at        = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)
    last_login_at     = db.Column(db.DateTime)

    bookings     = db.relationship('Booking', backref='member', cascade='all')
    transactions = db.relationship('Transaction', backref='member', cascade='all')
    wallet       = db.relationship('Wallet', backref='member', uselist=False,
                                   cascade='all')
    point_account = db.relationship('PointAccount', backref='member', uselist=False,
                                    cascade='all')
    wallet_transactions = db.relationship('WalletTransaction', backref='member',
                                          cascade='all')
    point_transactions  = db.relationship('PointTransaction', backref='member',
                                          cascade='all')
    notification_setting = db.relationship('NotificationSetting', backref='member', uselist=False,
                                           cascade='all')
    notification_logs    = db.relationship('NotificationLog', backref='member',
                                           cascade='all')

    def summary(self):
        return {'id': self.id, 'line_user_id': self.line_user_id,
                'name': self.name, 'phone': self.phone}

    def to_dict(self):
        return {
            'id': self.id, 'line_user_id': self.line_user_id,
            'line_display_name': self.line_display_name,
            'name': self.name, 'phone': self.phone, 'email': self.email,
            'email_verified': bool(self.email_verified),
            'birthday': self.birthday, 'gender': self.gender,
            'gender_label': format_gender(self.gender),
            'avatar_url': self.avatar_url, 'notes': self.notes,
            'is_active': self.is_active,
            'created_at': _fmt_dt(self.created_at),
            'updated_at': _fmt_dt(self.updated_at),
            'last_login_at': _fmt_dt(self.last_login_at),
        }


class Admin(db.Model):
    __tablename__ = 'admins'
    id            = db.Column(db.String(36), primary_key=True, default=_uuid)
    email         = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name          = db.Column(db.String(50), default='')
    role          = db.Column(db.String(20), default='admin')
    is_active     = db.Column(db.Boolean, default=True)
    created_at    = db.Column(db.DateTime, default=datetime.now)
    last_login_at = db.Column(db.DateTime)

    def set_password(self, pw):
        self.password_hash = generate_password_hash(pw)

    def check_password(self, pw):
        return check_password_hash(self.password_hash, pw or '')

    def to_dict(self):
        return {
            'id': self.id, 'email': self.email, 'name': self.name,
            'role': self.role, 'is_active': self.is_active,
            'created_at': _fmt_dt(self.created_at),
            'last_login_at': _fmt_dt(self.last_login_at),
        }


class EmailVerification(db.Model):
    __tablename__ = 'email_verifications'
    id           = db.Column(db.Integer, primary_key=True)
    email        = db.Column(db.String(255), nullable=False, index=True)
    code         = db.Column(db.String(6), nullable=False)
    line_user_id = db.Column(db.String(100))
    attempts     = db.Column(db.Integer, default=0)
    expires_at   = db.Column(db.DateTime, nullable=False)
    verified_at  = db.Column(db.DateTime)
    consumed_at  = db.Column(db.DateTime)
    created_at   = db.Column(db.DateTime, default=datetime.now)


class Service(db.Model):
    __tablename__ = 'services'
    id               = db.Column(db.String(36), primary_key=True, default=_uuid)
    name             = db.Column(db.String(100), nullable=False)
    description      = db.Column(db.Text)
    category         = db.Column(db.String(50))
    price            = db.Column(db.Numeric(12, 2), default=0)
    duration_minutes = db.Column(db.Integer, default=30)
    image_url        = db.Column(db.String(500))
    is_active        = db.Column(db.Boolean, default=True)
    sort_order       = db.Column(db.Integer, default=0)
    created_at       = db.Column(db.DateTime, default=datetime.now)
    updated_at       = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)
    options          = db.relationship('ServiceOption', backref='service',
                                       order_by='ServiceOption.sort_order',
                                       cascade='all, delete-orphan')

    def to_dict(self, active_options_only=False):
        options = [o for o in self.options if o.is_active or not active_options_only]
        return {
            'id': self.id, 'name': self.name, 'description': self.description,
            'category': self.category, 'price': _money(self.price),
            'duration_minutes': self.duration_minutes, 'image_url': self.image_url,
            'is_active': self.is_active, 'sort_order': self.sort_order,
            'service_options': [o.to_dict() for o in options],
        }


class ServiceOption(db.Model):
    __tablename__ = 'service_options'
    id            = db.Column(db.String(36), primary_key=True, default=_uuid)
    service_id    = db.Column(db.String(36), db.ForeignKey('services.id'), nullable=False)
    name          = db.Column(db.String(100), nullable=False)
    description   = db.Column(db.Text)
    price         = db.Column(db.Numeric(12, 2), default=0)   # 加價
    extra_minutes = db.Column(db.Integer, default=0)
    is_active     = db.Column(db.Boolean, default=True)
    sort_order    = db.Column(db.Integer, default=0)
    created_at    = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id, 'service_id': self.service_id, 'name': self.name,
            'description': self.description, 'price': _money(self.price),
            'extra_minutes': self.extra_minutes, 'is_active': self.is_active,
            'sort_order': self.sort_order,
        }


class BusinessHour(db.Model):
    __tablename__ = 'business_hours'
    id          = db.Column(db.Integer, primary_key=True)
    day_of_week = db.Column(db.Integer, unique=True, nullable=False)   # 0 = 週日
    is_open     = db.Column(db.Boolean, default=True)
    open_time   = db.Column(db.String(5), default='11:00')
    close_time  = db.Column(db.String(5), default='21:00')

    def to_dict(self):
        return {'id': self.id, 'day_of_week': self.day_of_week, 'is_open': self.is_open,
                'open_time': self.open_time, 'close_time': self.close_time}


class TimeSlot(db.Model):
    __tablename__ = 'time_slots'
    id           = db.Column(db.Integer, primary_key=True)
    time_slot    = db.Column(db.String(5), unique=True, nullable=False)   # HH:MM
    max_bookings = db.Column(db.Integer, default=1)
    is_active    = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {'id': self.id, 'time_slot': self.time_slot,
                'max_bookings': self.max_bookings, 'is_active': self.is_active}


class Booking(db.Model):
    __tablename__ = 'bookings'
    id                  = db.Column(db.String(36), primary_key=True, default=_uuid)
    booking_number      = db.Column(db.String(20), unique=True)
    member_id           = db.Column(db.String(36), db.ForeignKey('members.id'), nullable=False)
    service_id          = db.Column(db.String(36), db.ForeignKey('services.id'))
    service_option_id   = db.Column(db.String(36), db.ForeignKey('service_options.id'))
    service_name        = db.Column(db.String(100))
    service_option_name = db.Column(db.String(100))
    service_price       = db.Column(db.Numeric(12, 2), default=0)
    duration_minutes    = db.Column(db.Integer, default=30)
    booking_date        = db.Column(db.String(10), nullable=False)
    booking_time        = db.Column(db.String(5), nullable=False)
    end_time            = db.Column(db.String(5))
    status              = db.Column(db.String(20), default='pending')
    notes               = db.Column(db.Text)
    admin_notes         = db.Column(db.Text)
    payment_status      = db.Column(db.String(20), default='unpaid')
    paid_amount         = db.Column(db.Numeric(12, 2), default=0)
    transaction_id      = db.Column(db.String(36))
    confirmed_at        = db.Column(db.DateTime)
    cancelled_at        = db.Column(db.DateTime)
    completed_at        = db.Column(db.DateTime)
    created_at          = db.Column(db.DateTime, default=datetime.now)
    updated_at          = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)
    service             = db.relationship('Service')

    def summary(self):
        return {
            'id': self.id, 'booking_number': self.booking_number,
            'service_name': self.service_name, 'booking_date': self.booking_date,
            'booking_time': self.booking_time, 'service_price': _money(self.service_price),
            'payment_status': self.payment_status, 'paid_amount': _money(self.paid_amount),
        }

    def to_dict(self, with_member=False):
        d = {
            'id': self.id, 'booking_number': self.booking_number,
            'member_id': self.member_id, 'service_id': self.service_id,
            'service_option_id': self.service_option_id,
            'service_name': self.service_name,
            'service_option_name': self.service_option_name,
            'service_price': _money(self.service_price),
            'duration_minutes': self.duration_minutes,
            'booking_date': self.booking_date, 'booking_time': self.booking_time,
            'end_time': self.end_time, 'status': self.status,
            'notes': self.notes, 'admin_notes': self.admin_notes,
            'payment_status': self.payment_status,
            'paid_amount': _money(self.paid_amount),
            'transaction_id': self.transaction_id,
            'confirmed_at': _fmt_dt(self.confirmed_at),
            'cancelled_at': _fmt_dt(self.cancelled_at),
            'completed_at': _fmt_dt(self.completed_at),
            'created_at': _fmt_dt(self.created_at),
        }
        if with_member and self.member:
            d['members'] = self.member.summary()
            d['member_name'] = self.member.name
        return d


class PaymentMethod(db.Model):
    __tablename__ = 'payment_methods'
    id         = db.Column(db.Integer, primary_key=True)
    code       = db.Column(db.String(30), unique=True, nullable=False)
    name       = db.Column(db.String(50), nullable=False)
    is_active  = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {'id': self.id, 'code': self.code, 'name': self.name,
                'is_active': self.is_active, 'sort_order': self.sort_order}


class Transaction(db.Model):
    __tablename__ = 'transactions'
    id                      = db.Column(db.String(36), primary_key=True, default=_uuid)
    transaction_number      = db.Column(db.String(20), unique=True)
    member_id               = db.Column(db.String(36), db.ForeignKey('members.id'), nullable=False)
    booking_id              = db.Column(db.String(36), db.ForeignKey('bookings.id'))
    transaction_type        = db.Column(db.String(20), default='payment')
    amount                  = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount            = db.Column(db.Numeric(12, 2))
    discount_amount         = db.Column(db.Numeric(12, 2), default=0)
    wallet_amount           = db.Column(db.Numeric(12, 2), default=0)
    payment_method_id       = db.Column(db.Integer, db.ForeignKey('payment_methods.id'))
    payment_method_code     = db.Column(db.String(30))
    payment_method_name     = db.Column(db.String(50))
    status                  = db.Column(db.String(20), default='completed')
    description             = db.Column(db.Text)
    receipt_number          = db.Column(db.String(50))
    reference_number        = db.Column(db.String(100))
    notes                   = db.Column(db.Text)
    admin_notes             = db.Column(db.Text)
    original_transaction_id = db.Column(db.String(36))
    points_earned           = db.Column(db.Integer, default=0)
    created_by              = db.Column(db.String(36))
    created_at              = db.Column(db.DateTime, default=datetime.now)
    updated_at              = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)
    booking                 = db.relationship('Booking')

    def to_dict(self, with_relations=False):
        d = {
            'id': self.id, 'transaction_number': self.transaction_number,
            'member_id': self.member_id, 'booking_id': self.booking_id,
            'transaction_type': self.transaction_type,
            'amount': _money(self.amount), 'amount_display': format_amount(self.amount),
            'total_amount': _money(self.total_amount),
            'discount_amount': _money(self.discount_amount),
            'wallet_amount': _money(self.wallet_amount),
            'payment_method_id': self.payment_method_id,
            'payment_method_code': self.payment_method_code,
            'payment_method_name': self.payment_method_name,
            'status': self.status, 'description': self.description,
            'receipt_number': self.receipt_number,
            'reference_number': self.reference_number,
            'notes': self.notes, 'admin_notes': self.admin_notes,
            'original_transaction_id': self.original_transaction_id,
            'points_earned': self.points_earned or 0,
            'created_at': _fmt_dt(self.created_at),
        }
        if with_relations:
            d['members'] = self.member.summary() if self.member else None
            d['bookings'] = self.booking.summary() if self.booking else None
        return d


class Wallet(db.Model):
    __tablename__ = 'wallets'
    id              = db.Column(db.String(36), primary_key=True, default=_uuid)
    member_id       = db.Column(db.String(36), db.ForeignKey('members.id'), unique=True, nullable=False)
    balance         = db.Column(db.Numeric(12, 2), default=0)
    total_recharged = db.Column(db.Numeric(12, 2), default=0)
    total_spent     = db.Column(db.Numeric(12, 2), default=0)
    created_at      = db.Column(db.DateTime, default=datetime.now)
    updated_at      = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self, with_member=False):
        d = {
            'id': self.id, 'member_id': self.member_id,
            'balance': _money(self.balance), 'balance_display': format_amount(self.balance),
            'total_recharged': _money(self.total_recharged),
            'total_spent': _money(self.total_spent),
            'updated_at': _fmt_dt(self.updated_at),
        }
        if with_member:
            d['members'] = self.member.summary() if self.member else None
        return d


class WalletTransaction(db.Model):
    __tablename__ = 'wallet_transactions'
    id               = db.Column(db.String(36), primary_key=True, default=_uuid)
    wallet_id        = db.Column(db.String(36), db.ForeignKey('wallets.id'), nullable=False)
    member_id        = db.Column(db.String(36), db.ForeignKey('members.id'), nullable=False)
    transaction_type = db.Column(db.String(20), nullable=False)
    amount           = db.Column(db.Numeric(12, 2), nullable=False)
    balance_before   = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after    = db.Column(db.Numeric(12, 2), nullable=False)
    description      = db.Column(db.Text)
    reference_id     = db.Column(db.String(36))
    reference_type   = db.Column(db.String(30))
    admin_id         = db.Column(db.String(36))
    created_at       = db.Column(db.DateTime, default=datetime.now)
    wallet           = db.relationship('Wallet')

    def to_dict(self):
        return {
            'id': self.id, 'member_id': self.member_id,
            'transaction_type': self.transaction_type,
            'type_label': format_wallet_transaction_type(self.transaction_type),
            'amount': _money(self.amount),
            'balance_before': _money(self.balance_before),
            'balance_after': _money(self.balance_after),
            'new_balance': _money(self.balance_after),
            'description': self.description,
            'reference_id': self.reference_id, 'reference_type': self.reference_type,
            'created_at': _fmt_dt(self.created_at, '%Y-%m-%d %H:%M:%S'),
        }


class PointAccount(db.Model):
    __tablename__ = 'points'
    id           = db.Column(db.String(36), primary_key=True, default=_uuid)
    member_id    = db.Column(db.String(36), db.ForeignKey('members.id'), unique=True, nullable=False)
    balance      = db.Column(db.Integer, default=0)
    total_earned = db.Column(db.Integer, default=0)
    total_spent  = db.Column(db.Integer, default=0)
    created_at   = db.Column(db.DateTime, default=datetime.now)
    updated_at   = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self, with_member=False):
        d = {
            'id': self.id, 'member_id': self.member_id,
            'balance': self.balance or 0, 'balance_display': format_points(self.balance),
            'total_earned': self.total_earned or 0,
            'total_spent': self.total_spent or 0,
            'updated_at': _fmt_dt(self.updated_at),
        }
        if with_member:
            d['members'] = self.member.summary() if self.member else None
        return d


class PointTransaction(db.Model):
    __tablename__ = 'point_transactions'
    id               = db.Column(db.String(36), primary_key=True, default=_uuid)
    account_id       = db.Column(db.String(36), db.ForeignKey('points.id'), nullable=False)
    member_id        = db.Column(db.String(36), db.ForeignKey('members.id'), nullable=False)
    transaction_type = db.Column(db.String(20), nullable=False)
    points           = db.Column(db.Integer, nullable=False)   # 獲得為正、使用為負
    balance_before   = db.Column(db.Integer, nullable=False)
    balance_after    = db.Column(db.Integer, nullable=False)
    description      = db.Column(db.Text)
    reference_id     = db.Column(db.String(36))
    reference_type   = db.Column(db.String(30))
    admin_id         = db.Column(db.String(36))
    created_at       = db.Column(db.DateTime, default=datetime.now)
    account          = db.relationship('PointAccount')

    def to_dict(self):
        return {
            'id': self.id, 'member_id': self.member_id,
            'transaction_type': self.transaction_type,
            'type_label': format_point_transaction_type(self.transaction_type),
            'points': self.points,
            'balance_before': self.balance_before,
            'balance_after': self.balance_after,
            'new_balance': self.balance_after,
            'description': self.description,
            'reference_id': self.reference_id, 'reference_type': self.reference_type,
            'created_at': _fmt_dt(self.created_at, '%Y-%m-%d %H:%M:%S'),
        }


class PointRule(db.Model):
    __tablename__ = 'point_rules'
    id          = db.Column(db.Integer, primary_key=True)
    rule_type   = db.Column(db.String(30), unique=True, nullable=False)
    name        = db.Column(db.String(50))
    value       = db.Column(db.Numeric(12, 2), default=0)
    description = db.Column(db.Text)
    is_active   = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {'id': self.id, 'rule_type': self.rule_type, 'name': self.name,
                'value': _money(self.value), 'description': self.description,
                'is_active': self.is_active}


class NotificationSetting(db.Model):
    __tablename__ = 'notification_settings'
    id                          = db.Column(db.Integer, primary_key=True)
    member_id                   = db.Column(db.String(36), db.ForeignKey('members.id'),
                                            unique=True, nullable=False)
    booking_reminder_enabled    = db.Column(db.Boolean, default=True)
    birthday_greeting_enabled   = db.Column(db.Boolean, default=True)
    wallet_notification_enabled = db.Column(db.Boolean, default=True)
    points_notification_enabled = db.Column(db.Boolean, default=True)
    promotion_enabled           = db.Column(db.Boolean, default=True)
    booking_reminder_hours      = db.Column(db.Integer, default=24)
    updated_at                  = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    EDITABLE = ('booking_reminder_enabled', 'birthday_greeting_enabled',
                'wallet_notification_enabled', 'points_notification_enabled',
                'promotion_enabled', 'booking_reminder_hours')

    def to_dict(self):
        d = {f: getattr(self, f) for f in self.EDITABLE}
        d['member_id'] = self.member_id
        return d


class NotificationLog(db.Model):
    __tablename__ = 'notification_logs'
    id                     = db.Column(db.Integer, primary_key=True)
    member_id              = db.Column(db.String(36), db.ForeignKey('members.id'), nullable=False)
    notification_type      = db.Column(db.String(30), default='system')
    message                = db.Column(db.Text)
    related_booking_id     = db.Column(db.String(36))
    related_transaction_id = db.Column(db.String(36))
    status                 = db.Column(db.String(20), default='sent')
    error_message          = db.Column(db.Text)
    sent_at                = db.Column(db.DateTime)
    created_at             = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id, 'member_id': self.member_id,
            'notification_type': self.notification_type, 'message': self.message,
            'related_booking_id': self.related_booking_id,
            'related_transaction_id': self.related_transaction_id,
            'status': self.status, 'error_message': self.error_message,
            'sent_at': _fmt_dt(self.sent_at, '%Y-%m-%d %H:%M:%S'),
            'created_at': _fmt_dt(self.created_at, '%Y-%m-%d %H:%M:%S'),
        }


# ─────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────

@app.errorhandler(ApiError)
def handle_api_error(e):
    db.session.rollback()
    return jsonify({'success': False, 'error': e.message}), e.status


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    db.session.rollback()
    body = {'success': False, 'error': e.message}
    if e.field:
        body['field'] = e.field
    return jsonify(body), 400


@app.errorhandler(line_api.LineApiError)
def handle_line_error(e):
    db.session.rollback()
    logger.warning('[LINE] %s %s', request.path, e)
    return jsonify({'success': False, 'error': str(e)}), 502


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({'success': False, 'error': e.description}), e.code
    db.session.rollback()
    logger.exception('[%s %s] unexpected error', request.method, request.path)
    return jsonify({'success': False, 'error': '伺服器錯誤，請稍後再試'}), 500


# ─────────────────────────────────────────────
# Session helpers
# ─────────────────────────────────────────────

def save_member_session(member, access_token=None):
    session.permanent = True
    session[MEMBER_SESSION_KEY] = {
        'member_id':    member.id,
        'line_user_id': member.line_user_id,
        'access_token': access_token,
        'expires_at':   (datetime.now() + SESSION_EXPIRY).timestamp(),
    }


def get_member_session():
    data = session.get(MEMBER_SESSION_KEY)
    if not data:
        return None
    if (data.get('expires_at') or 0) < datetime.now().timestamp():
        session.pop(MEMBER_SESSION_KEY, None)
        return None
    return data


def clear_member_session():
    session.pop(MEMBER_SESSION_KEY, None)


def current_member():
    data = get_member_session()
    if not data:
        return None
    m = db.session.get(Member, data.get('member_id'))
    if not m or not m.is_active:
        clear_member_session()
        return None
    return m


def require_member():
    m = current_member()
    if not m:
        raise ApiError('請先登入會員', 401)
    return m


def session_line_user_id(claimed=None):
    """只信任 LINE 登入時寫入 session 的 LINE ID，請求帶來的必須一致"""
    lid = clean_text((get_member_session() or {}).get('line_user_id'))
    claimed = clean_text(claimed)
    if claimed and claimed != lid:
        raise ApiError('LINE 帳號與登入狀態不符', 403)
    return lid


def get_current_admin():
    aid = session.get(ADMIN_SESSION_KEY)
    if not aid:
        return None
    a = db.session.get(Admin, aid)
    if a and a.is_active:
        return a
    session.pop(ADMIN_SESSION_KEY, None)
    return None


def check_admin():
    if get_current_admin():
        return None
    return jsonify({'success': False, 'error': 'Unauthorized'}), 401


def _admin_id():
    a = get_current_admin()
    return a.id if a else None


def _json():
    return request.get_json(silent=True) or {}


def _truthy(v):
    if isinstance(v, bool):
        return v
    return str(v or '').strip().lower() in {'1', 'true', 'yes', 'on'}


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────

def _next_number(column, prefix):
    head = f'{prefix}{datetime.now().strftime("%Y%m%d")}'
    last = db.session.query(func.max(column)).filter(column.like(f'{head}%')).scalar()
    seq = int(last[len(head):]) + 1 if last else 1
    return f'{head}{str(seq).zfill(4)}'


def generate_booking_number():
    return _next_number(Booking.booking_number, 'BK')


def generate_transaction_number():
    return _next_number(Transaction.transaction_number, 'TX')


def _to_minutes(t):
    h, m = map(int, t.split(':')[:2])
    return h * 60 + m


def _from_minutes(n):
    return f'{n // 60:02d}:{n % 60:02d}'


def _day_of_week(date_str):
    # 0 = 週日 ... 6 = 週六
    return (datetime.strptime(date_str, '%Y-%m-%d').weekday() + 1) % 7


def _today():
    return datetime.now().strftime('%Y-%m-%d')


def _parse_duration(value, default=30):
    if value in (None, ''):
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError('服務時長格式錯誤')
    if n <= 0:
        raise ValidationError('服務時長必須大於 0')
    return n


def get_member_or_404(member_id):
    mid = require_uuid(member_id, '會員 ID 格式錯誤')
    m = db.session.get(Member, mid)
    if not m:
        raise ApiError('找不到此會員', 404)
    return m


def resolve_member(member_id=None, line_user_id=None):
    """依 member_id 或 line_user_id 找會員，佔位值視同未提供"""
    mid = clean_uuid(member_id)
    lid = clean_text(line_user_id)
    if not mid and not lid:
        raise ValidationError('缺少會員資訊')
    if mid:
        m = db.session.get(Member, mid)
    else:
        m = Member.query.filter_by(line_user_id=lid).first()
    if not m:
        raise ApiError('找不到此會員', 404)
    return m


def _default_member_name(candidate, email=None):
    text = (candidate or '').strip()[:NAME_MAX_LENGTH]
    if len(text) < NAME_MIN_LENGTH and email:
        text = email.split('@')[0][:NAME_MAX_LENGTH]
    if len(text) < NAME_MIN_LENGTH:
        text = '新會員'
    return text


# ─────────────────────────────────────────────
# Wallet / Points ledger
# ─────────────────────────────────────────────

def get_or_create_wallet(member_id, lock=False):
    q = Wallet.query.filter_by(member_id=member_id)
    w = (q.with_for_update() if lock else q).first()
    if not w:
        w = Wallet(member_id=member_id, balance=Decimal('0'),
                   total_recharged=Decimal('0'), total_spent=Decimal('0'))
        db.session.add(w)
        db.session.flush()
    return w


def get_or_create_point_account(member_id, lock=False):
    q = PointAccount.query.filter_by(member_id=member_id)
    acct = (q.with_for_update() if lock else q).first()
    if not acct:
        acct = PointAccount(member_id=member_id, balance=0, total_earned=0, total_spent=0)
        db.session.add(acct)
        db.session.flush()
    return acct


def change_wallet(member_id, amount, transaction_type, description=None,
                  reference_id=None, reference_type=None, admin_id=None):
    """amount 為帶正負號的異動金額，餘額不得為負"""
    w = get_or_create_wallet(member_id, lock=True)
    before = Decimal(w.balance or 0)
    after = before + amount
    if after < 0:
        raise ApiError('儲值金餘額不足')
    w.balance = after
    if transaction_type == 'recharge':
        w.total_recharged = Decimal(w.total_recharged or 0) + amount
    elif amount < 0:
        w.total_spent = Decimal(w.total_spent or 0) - amount
    row = WalletTransaction(
        wallet_id=w.id, member_id=member_id, transaction_type=transaction_type,
        amount=amount, balance_before=before, balance_after=after,
        description=description, reference_id=reference_id,
        reference_type=reference_type, admin_id=admin_id,
    )
    db.session.add(row)
    db.session.flush()
    logger.info('[wallet] member=%s %s %s -> %s', member_id, transaction_type, amount, after)
    return row


def change_points(member_id, points, transaction_type, description=None,
                  reference_id=None, reference_type=None, admin_id=None):
    acct = get_or_create_point_account(member_id, lock=True)
    before = acct.balance or 0
    after = before + points
    if after < 0:
        raise ApiError('積分不足')
    acct.balance = after
    if points > 0:
        acct.total_earned = (acct.total_earned or 0) + points
    else:
        acct.total_spent = (acct.total_spent or 0) - points
    row = PointTransaction(
        account_id=acct.id, member_id=member_id, transaction_type=transaction_type,
        points=points, balance_before=before, balance_after=after,
        description=description, reference_id=reference_id,
        reference_type=reference_type, admin_id=admin_id,
    )
    db.session.add(row)
    db.session.flush()
    logger.info('[points] member=%s %s %s -> %s', member_id, transaction_type, points, after)
    return row


def recharge_wallet(member_id, amount, description=None, reference_id=None,
                    reference_type='transaction', admin_id=None):
    m = get_member_or_404(member_id)
    amount = parse_amount(amount, '儲值金額必須大於 0')
    return change_wallet(m.id, amount, 'recharge', clean_text(description) or '儲值',
                         clean_text(reference_id), reference_type, admin_id)


def pay_with_wallet(member_id, amount, description=None, reference_id=None,
                    reference_type='transaction', admin_id=None):
    m = get_member_or_404(member_id)
    amount = parse_amount(amount, '付款金額必須大於 0')
    return change_wallet(m.id, -amount, 'payment', clean_text(description) or '儲值金付款',
                         clean_text(reference_id), reference_type, admin_id)


def earn_points(member_id, points, description=None, reference_id=None,
                reference_type='transaction', admin_id=None):
    m = get_member_or_404(member_id)
    points = parse_points(points, '積分必須大於 0')
    return change_points(m.id, points, 'earn', clean_text(description) or '獲得積分',
                         clean_text(reference_id), reference_type, admin_id)


def spend_points(member_id, points, description=None, reference_id=None,
                 reference_type='transaction', admin_id=None):
    m = get_member_or_404(member_id)
    points = parse_points(points, '積分必須大於 0')
    return change_points(m.id, -points, 'spend', clean_text(description) or '使用積分',
                         clean_text(reference_id), reference_type, admin_id)


def get_spend_rate():
    rule = PointRule.query.filter_by(rule_type='spend_rate', is_active=True).first()
    if rule and rule.value and Decimal(rule.value) > 0:
        return Decimal(rule.value)
    return None


def calculate_points(amount):
    """消費金額換算積分：floor(金額 / 消費門檻)"""
    try:
        amount = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError('金額格式錯誤')
    if not amount.is_finite():
        raise ValidationError('金額格式錯誤')
    rate = get_spend_rate()
    if not rate or amount <= 0:
        return 0
    return int((amount / rate).to_integral_value(rounding=ROUND_DOWN))


def init_new_member(member):
    """新會員：預設通知設定 + 註冊禮積分"""
    if not member.notification_setting:
        member.notification_setting = NotificationSetting()
    rule = PointRule.query.filter_by(rule_type='signup_bonus', is_active=True).first()
    bonus = int(rule.value) if rule and rule.value else 0
    if bonus > 0:
        change_points(member.id, bonus, 'bonus', '新會員註冊獎勵', reference_type='signup')
    db.session.flush()


# ─────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────

def notification_enabled(member, notification_type):
    field = NOTIFICATION_TOGGLES.get(notification_type)
    if not field:
        return True
    s = member.notification_setting
    return True if s is None else bool(getattr(s, field))


def get_or_create_notification_setting(member):
    s = member.notification_setting
    if not s:
        s = member.notification_setting = NotificationSetting()
        db.session.flush()
    return s


def notify_member(member, message, notification_type='system',
                  related_booking_id=None, related_transaction_id=None):
    """推播給會員並寫入 notification_logs，失敗只記錄不拋出；回傳是否送達"""
    if not member or not member.line_user_id:
        return False
    if not notification_enabled(member, notification_type):
        return False
    log = NotificationLog(
        member_id=member.id, notification_type=notification_type,
        message=line_api.message_text(message),
        related_booking_id=related_booking_id,
        related_transaction_id=related_transaction_id,
    )
    try:
        line_api.push_message(LINE_CHANNEL_ACCESS_TOKEN, member.line_user_id,
                              [line_api.build_message(message)])
        log.status = 'sent'
        log.sent_at = datetime.now()
    except line_api.LineApiError as e:
        log.status = 'failed'
        log.error_message = str(e)[:500]
        logger.warning('[notify] %s -> member %s failed: %s', notification_type, member.id, e)
    db.session.add(log)
    return log.status == 'sent'


def notify_wallet_change(row):
    label = format_wallet_transaction_type(row.transaction_type)
    msg = (f'【儲值金異動】{label} {format_amount(abs(Decimal(row.amount)))}，'
           f'目前餘額 {format_amount(row.balance_after)}')
    return notify_member(row.member, msg, 'wallet_change',
                         related_transaction_id=row.reference_id)


def notify_points_change(row):
    label = format_point_transaction_type(row.transaction_type)
    msg = (f'【積分異動】{label} {format_points(abs(row.points))}，'
           f'目前積分 {format_points(row.balance_after)}')
    return notify_member(row.member, msg, 'points_change',
                         related_transaction_id=row.reference_id)


def notify_ledger_rows(rows):
    for row in rows:
        if isinstance(row, WalletTransaction):
            notify_wallet_change(row)
        elif isinstance(row, PointTransaction):
            notify_points_change(row)


def _booking_line(b):
    text = f'{b.service_name}'
    if b.service_option_name:
        text += f'（{b.service_option_name}）'
    return f'{text}｜{b.booking_date} {b.booking_time}｜編號 {b.booking_number}'


def notify_booking(b, notification_type):
    titles = {
        'booking_created':   '【預約成功】',
        'booking_confirmed': '【預約確認】',
        'booking_cancelled': '【預約取消】',
    }
    msg = titles.get(notification_type, '【預約通知】') + _booking_line(b)
    if notification_type == 'booking_created':
        msg += '\n我們將盡快為您確認預約。'
    return notify_member(b.member, msg, notification_type, related_booking_id=b.id)


def notify_shop_new_booking(b):
    m = b.member
    payload = b.to_dict()
    payload.update({
        'member_name':  m.name if m else '',
        'member_phone': m.phone if m else '',
        'member_email': m.email if m else '',
    })
    if not mailer.send_booking_notification_to_shop(payload):
        logger.info('[create_booking] shop email not sent for %s', b.booking_number)


def send_promotion(title, description=None, start_date=None, end_date=None):
    title = clean_text(title)
    if not title:
        raise ValidationError('缺少活動標題')
    lines = [f'【{title}】']
    if clean_text(description):
        lines.append(description.strip())
    start_date, end_date = clean_text(start_date), clean_text(end_date)
    if start_date or end_date:
        lines.append(f'活動期間：{start_date or ""} ~ {end_date or ""}')
    message = '\n'.join(lines)
    sent = skipped = 0
    members = Member.query.filter(Member.line_user_id.isnot(None),
                                  Member.is_active.is_(True)).all()
    for m in members:
        if notify_member(m, message, 'promotion'):
            sent += 1
        else:
            skipped += 1
    logger.info('[promotion] %s sent=%d skipped=%d', title, sent, skipped)
    return sent, skipped


# ─────────────────────────────────────────────
# Members
# ─────────────────────────────────────────────

def upsert_member_from_line(line_user_id, display_name=None, picture_url=None):
    lid = clean_text(line_user_id)
    if not lid:
        raise ValidationError('缺少 LINE 使用者 ID')
    now = datetime.now()
    m = Member.query.filter_by(line_user_id=lid).first()
    if m:
        if display_name:
            m.line_display_name = display_name
        if picture_url:
            m.avatar_url = picture_url
        m.last_login_at = now
        db.session.flush()
        return m, False
    m = Member(line_user_id=lid, line_display_name=display_name,
               name=_default_member_name(display_name), avatar_url=picture_url,
               last_login_at=now)
    db.session.add(m)
    db.session.flush()
    init_new_member(m)
    logger.info('[member] new LINE member %s', m.id)
    return m, True


def _check_email_free(email, member_id=None):
    if not email:
        return
    q = Member.query.filter(Member.email == email)
    if member_id:
        q = q.filter(Member.id != member_id)
    if q.first():
        raise ApiError('此 Email 已被其他會員使用', 409)


def _check_line_free(line_user_id, member_id=None):
    if not line_user_id:
        return
    q = Member.query.filter(Member.line_user_id == line_user_id)
    if member_id:
        q = q.filter(Member.id != member_id)
    if q.first():
        raise ApiError('此 LINE 帳號已綁定其他會員', 409)


def update_member_profile(member, data):
    if 'name' in data:
        member.name = validate_member_name(data.get('name'))
    if 'phone' in data:
        member.phone = validate_phone(data.get('phone'))
    if 'email' in data:
        email = validate_email(data.get('email'))
        if email != member.email:
            _check_email_free(email, member.id)
            member.email = email
            member.email_verified = False
    if 'gender' in data:
        member.gender = validate_gender(data.get('gender'))
    if 'birthday' in data:
        member.birthday = validate_birthday(data.get('birthday'))
    db.session.flush()
    return member


def admin_update_member(member, data):
    update_member_profile(member, data)
    if 'notes' in data:
        member.notes = (data.get('notes') or '').strip() or None
    if 'is_active' in data:
        member.is_active = _truthy(data.get('is_active'))
    if 'email_verified' in data:
        member.email_verified = _truthy(data.get('email_verified'))
    if 'line_user_id' in data:
        lid = clean_text(data.get('line_user_id'))
        _check_line_free(lid, member.id)
        member.line_user_id = lid
    db.session.flush()
    return member


def admin_create_member(data):
    name = validate_member_name(data.get('name'))
    email = validate_email(data.get('email'))
    lid = clean_text(data.get('line_user_id'))
    _check_email_free(email)
    _check_line_free(lid)
    m = Member(
        name=name, email=email, line_user_id=lid,
        phone=validate_phone(data.get('phone')),
        gender=validate_gender(data.get('gender')),
        birthday=validate_birthday(data.get('birthday')),
        notes=(data.get('notes') or '').strip() or None,
    )
    db.session.add(m)
    db.session.flush()
    init_new_member(m)
    return m


def search_members(q, limit=50):
    text = (q or '').strip()
    if not text:
        return []
    like = f'%{text.lower()}%'
    return (Member.query
            .filter(or_(func.lower(Member.name).like(like),
                        func.lower(Member.phone).like(like),
                        func.lower(Member.email).like(like)))
            .order_by(Member.created_at.desc())
            .limit(limit).all())


def get_member_stats():
    total = Member.query.count()
    line_bound = Member.query.filter(Member.line_user_id.isnot(None)).count()
    recent = Member.query.order_by(Member.created_at.desc()).limit(5).all()
    today = _today()
    start = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    rows = Transaction.query.filter(Transaction.status == 'completed',
                                    Transaction.created_at >= start).all()
    revenue = sum((Decimal(t.amount) if t.transaction_type == 'payment' else -Decimal(t.amount)
                   for t in rows), Decimal('0'))
    wallet_total = db.session.query(func.coalesce(func.sum(Wallet.balance), 0)).scalar()
    points_total = db.session.query(func.coalesce(func.sum(PointAccount.balance), 0)).scalar()
    return {
        'total_members': total,
        'line_bound_members': line_bound,
        'binding_rate': f'{round(line_bound * 100 / total)}%' if total else '0%',
        'recent_members': [m.to_dict() for m in recent],
        'today_bookings': Booking.query.filter(Booking.booking_date == today,
                                               Booking.status != 'cancelled').count(),
        'pending_bookings': Booking.query.filter_by(status='pending').count(),
        'today_revenue': float(revenue),
        'total_wallet_balance': _money(wallet_total),
        'total_points': int(points_total or 0),
    }


# ─────────────────────────────────────────────
# Email verification
# ─────────────────────────────────────────────

INVALID_CODE_MESSAGE = '驗證碼無效或已過期，請重新獲取'


def _strict_email(email):
    if not is_valid_email(email):
        raise ValidationError(EMAIL_MESSAGE, field='email')
    return email.strip().lower()


def generate_verification_code(email, line_user_id=None):
    email = _strict_email(email)
    now = datetime.now()
    latest = (EmailVerification.query.filter_by(email=email)
              .order_by(EmailVerification.created_at.desc(), EmailVerification.id.desc())
              .first())
    if latest and latest.created_at and \
            (now - latest.created_at).total_seconds() < VERIFICATION_RESEND_SECONDS:
        raise ApiError('驗證碼發送太頻繁，請稍後再試', 429)
    ev = EmailVerification(
        email=email, code=f'{secrets.randbelow(1000000):06d}',
        line_user_id=clean_text(line_user_id),
        expires_at=now + timedelta(minutes=VERIFICATION_EXPIRY_MINUTES),
        created_at=now, attempts=0,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def verify_email_code(email, code):
    email = (email or '').strip().lower()
    code = str(code or '').strip()
    if not email or not code:
        raise ValidationError('請輸入 Email 與驗證碼')
    ev = (EmailVerification.query.filter_by(email=email, consumed_at=None)
          .order_by(EmailVerification.created_at.desc(), EmailVerification.id.desc())
          .first())
    if not ev or ev.expires_at < datetime.now() or (ev.attempts or 0) >= VERIFICATION_MAX_ATTEMPTS:
        raise ValidationError(INVALID_CODE_MESSAGE)
    if not secrets.compare_digest(ev.code, code):
        # 錯誤次數要留存，不能被錯誤處理的 rollback 吃掉
        ev.attempts = (ev.attempts or 0) + 1
        db.session.commit()
        raise ValidationError(INVALID_CODE_MESSAGE)
    ev.verified_at = datetime.now()
    db.session.flush()
    return ev


def require_fresh_verification(email):
    cutoff = datetime.now() - timedelta(minutes=VERIFICATION_FRESH_MINUTES)
    ev = (EmailVerification.query
          .filter(EmailVerification.email == email,
                  EmailVerification.verified_at.isnot(None),
                  EmailVerification.verified_at >= cutoff,
                  EmailVerification.consumed_at.is_(None))
          .order_by(EmailVerification.verified_at.desc())
          .first())
    if not ev:
        raise ApiError('請先完成 Email 驗證', 400)
    return ev


def complete_registration(email, line_user_id=None, line_display_name=None,
                          line_picture_url=None, name=None, phone=None):
    email = _strict_email(email)
    ev = require_fresh_verification(email)
    lid = clean_text(line_user_id)
    now = datetime.now()
    is_new = False

    member = Member.query.filter_by(email=email).first()
    if member:
        if lid and member.line_user_id != lid:
            if member.line_user_id:
                raise ApiError('此 Email 已綁定其他 LINE 帳號', 409)
            _check_line_free(lid, member.id)
            member.line_user_id = lid
    else:
        member = Member.query.filter_by(line_user_id=lid).first() if lid else None
        if member:
            member.email = email
        else:
            member = Member(
                name=_default_member_name(name or line_display_name, email),
                email=email, phone=validate_phone(phone), line_user_id=lid,
            )
            db.session.add(member)
            db.session.flush()
            init_new_member(member)
            is_new = True

    if lid and member.line_user_id == lid:
        if line_display_name:
            member.line_display_name = line_display_name
        if line_picture_url:
            member.avatar_url = line_picture_url
    member.email_verified = True
    member.last_login_at = now
    ev.consumed_at = now
    db.session.flush()
    logger.info('[register] member=%s new=%s', member.id, is_new)
    return member, is_new


def email_login(email):
    email = _strict_email(email)
    ev = require_fresh_verification(email)
    member = Member.query.filter_by(email=email).first()
    if not member:
        raise ApiError('找不到此 Email 的會員', 404)
    if not member.is_active:
        raise ApiError('此會員帳號已停用', 403)
    member.email_verified = True
    member.last_login_at = datetime.now()
    ev.consumed_at = datetime.now()
    db.session.flush()
    return member


def link_line_account(email, line_user_id, line_display_name=None, line_picture_url=None):
    email = _strict_email(email)
    lid = clean_text(line_user_id)
    if not lid:
        raise ValidationError('缺少 LINE 使用者 ID')
    ev = require_fresh_verification(email)
    member = Member.query.filter_by(email=email).first()
    if not member:
        raise ApiError('找不到此 Email 的會員', 404)
    _check_line_free(lid, member.id)
    member.line_user_id = lid
    if line_display_name:
        member.line_display_name = line_display_name
    if line_picture_url:
        member.avatar_url = line_picture_url
    member.email_verified = True
    ev.consumed_at = datetime.now()
    db.session.flush()
    return member


# ─────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────

def get_service_or_404(service_id, active_only=False):
    sid = require_uuid(service_id, '服務 ID 格式錯誤')
    s = db.session.get(Service, sid)
    if not s or (active_only and not s.is_active):
        raise ApiError('找不到此服務', 404)
    return s


def _price(value, field='price'):
    if value in (None, ''):
        return Decimal('0')
    try:
        p = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError('價格格式錯誤', field=field)
    if not p.is_finite() or p < 0:
        raise ValidationError('價格不可為負數', field=field)
    return p.quantize(CENT)


def _int(value, default=0, field=None):
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('數值格式錯誤', field=field)


def apply_service_fields(s, data):
    if 'name' in data or s.name is None:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('請輸入服務名稱', field='name')
        s.name = name
    if 'description' in data:
        s.description = (data.get('description') or '').strip() or None
    if 'category' in data:
        s.category = (data.get('category') or '').strip() or None
    if 'price' in data:
        s.price = _price(data.get('price'))
    if 'duration_minutes' in data:
        s.duration_minutes = _parse_duration(data.get('duration_minutes'))
    if 'image_url' in data:
        s.image_url = (data.get('image_url') or '').strip() or None
    if 'is_active' in data:
        s.is_active = _truthy(data.get('is_active'))
    if 'sort_order' in data:
        s.sort_order = _int(data.get('sort_order'), field='sort_order')
    return s


def apply_option_fields(o, data):
    if 'name' in data or o.name is None:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('請輸入選項名稱', field='name')
        o.name = name
    if 'description' in data:
        o.description = (data.get('description') or '').strip() or None
    if 'price' in data:
        o.price = _price(data.get('price'))
    if 'extra_minutes' in data:
        n = _int(data.get('extra_minutes'), field='extra_minutes')
        if n < 0:
            raise ValidationError('加時不可為負數', field='extra_minutes')
        o.extra_minutes = n
    if 'is_active' in data:
        o.is_active = _truthy(data.get('is_active'))
    if 'sort_order' in data:
        o.sort_order = _int(data.get('sort_order'), field='sort_order')
    return o


# ─────────────────────────────────────────────
# Bookings
# ─────────────────────────────────────────────

def _slot_has_capacity(date, time, duration, exclude_booking_id=None, lock=False):
    """營業時間與同時段名額檢查，不含「已過時間」的判斷"""
    start, end = _to_minutes(time), _to_minutes(time) + duration
    q = BusinessHour.query.filter_by(day_of_week=_day_of_week(date))
    if lock:
        # 鎖住當天營業時間列，跨時段重疊的預約也會依序計數
        q = q.with_for_update()
    hours = q.first()
    if not hours or not hours.is_open:
        return False
    if start < _to_minutes(hours.open_time) or end > _to_minutes(hours.close_time):
        return False
    slot = TimeSlot.query.filter_by(time_slot=time, is_active=True).first()
    if not slot:
        return False

    q = Booking.query.filter(Booking.booking_date == date,
                             Booking.status.in_(ACTIVE_BOOKING_STATUSES))
    if exclude_booking_id:
        q = q.filter(Booking.id != exclude_booking_id)
    overlapping = 0
    for b in q.all():
        b_start = _to_minutes(b.booking_time)
        b_end = _to_minutes(b.end_time) if b.end_time else b_start + (b.duration_minutes or 30)
        if b_start < end and start < b_end:
            overlapping += 1
    return overlapping < (slot.max_bookings or 1)


def check_time_slot_available(date, time, duration=30, exclude_booking_id=None, lock=False):
    date = normalize_date(date, '預約日期格式錯誤')
    time = normalize_time(time, '預約時間格式錯誤')
    duration = _parse_duration(duration)
    now = datetime.now()
    today = now.strftime('%Y-%m-%d')

    if date < today:
        return False
    if date == today and _to_minutes(time) <= now.hour * 60 + now.minute:
        return False
    return _slot_has_capacity(date, time, duration, exclude_booking_id, lock)


def get_available_time_slots(date, duration=30):
    date = normalize_date(date, '預約日期格式錯誤')
    duration = _parse_duration(duration)
    hours = BusinessHour.query.filter_by(day_of_week=_day_of_week(date)).first()
    if not hours or not hours.is_open:
        return []
    slots = TimeSlot.query.filter_by(is_active=True).order_by(TimeSlot.time_slot).all()
    return [s.time_slot for s in slots
            if check_time_slot_available(date, s.time_slot, duration)]


def create_booking(member, params):
    """params 為 build_booking_params 的輸出（p_* 鍵）"""
    service = db.session.get(Service, params['p_service_id'])
    if not service or not service.is_active:
        raise ApiError('找不到此服務或已停用', 404)
    option = None
    if params.get('p_service_option_id'):
        option = db.session.get(ServiceOption, params['p_service_option_id'])
        if not option or option.service_id != service.id or not option.is_active:
            raise ApiError('服務選項無效')

    date, time = params['p_booking_date'], params['p_booking_time']
    if date < _today():
        raise ApiError('無法預約過去的日期')
    duration = (service.duration_minutes or 30) + ((option.extra_minutes or 0) if option else 0)
    if not check_time_slot_available(date, time, duration, lock=True):
        raise ApiError('此時段已額滿，請選擇其他時間', 409)

    price = Decimal(service.price or 0) + (Decimal(option.price or 0) if option else Decimal('0'))
    b = Booking(
        booking_number=generate_booking_number(),
        member_id=member.id, service_id=service.id,
        service_option_id=option.id if option else None,
        service_name=service.name,
        service_option_name=option.name if option else None,
        service_price=price, duration_minutes=duration,
        booking_date=date, booking_time=time,
        end_time=_from_minutes(_to_minutes(time) + duration),
        status='pending', notes=params.get('p_notes'),
        payment_status='unpaid', paid_amount=Decimal('0'),
    )
    db.session.add(b)
    db.session.flush()
    logger.info('[create_booking] %s member=%s %s %s', b.booking_number, member.id, date, time)
    return b


def get_booking_or_404(booking_id):
    bid = require_uuid(booking_id, '預約 ID 格式錯誤')
    b = db.session.get(Booking, bid)
    if not b:
        raise ApiError('找不到此預約', 404)
    return b


def cancel_booking(member, booking_id):
    bid = require_uuid(booking_id, '預約 ID 格式錯誤')
    b = Booking.query.filter_by(id=bid, member_id=member.id).first()
    if not b:
        raise ApiError('找不到此預約', 404)
    if b.status not in ACTIVE_BOOKING_STATUSES:
        raise ApiError('此預約無法取消')
    b.status = 'cancelled'
    b.cancelled_at = datetime.now()
    db.session.flush()
    return b


def update_booking_status(booking_id, status, admin_notes=None):
    if status not in BOOKING_STATUSES:
        raise ValidationError('預約狀態錯誤', field='status')
    b = get_booking_or_404(booking_id)
    if status in ACTIVE_BOOKING_STATUSES and b.status not in ACTIVE_BOOKING_STATUSES:
        # 已取消/完成的預約重新啟用，需重新檢查名額
        if not _slot_has_capacity(b.booking_date, b.booking_time, b.duration_minutes or 30,
                                  exclude_booking_id=b.id, lock=True):
            raise ApiError('此時段已額滿，請選擇其他時間', 409)
    now = datetime.now()
    b.status = status
    if status == 'confirmed':
        b.confirmed_at = now
    elif status == 'cancelled':
        b.cancelled_at = now
    elif status == 'completed':
        b.completed_at = now
    if admin_notes is not None:
        b.admin_notes = str(admin_notes).strip() or None
    db.session.flush()
    return b


def refresh_booking_payment(booking):
    """依已完成的付款與退款重算預約付款狀態"""
    rows = Transaction.query.filter_by(booking_id=booking.id, status='completed').all()
    paid = sum((Decimal(t.amount) for t in rows if t.transaction_type == 'payment'), Decimal('0'))
    refunded = sum((Decimal(t.amount) for t in rows if t.transaction_type == 'refund'), Decimal('0'))
    net = paid - refunded
    price = Decimal(booking.service_price or 0)
    if net > 0 and net >= price:
        booking.payment_status = 'paid'
        booking.paid_amount = price
    elif net > 0:
        booking.payment_status = 'partial'
        booking.paid_amount = net
    else:
        booking.payment_status = 'refunded' if refunded > 0 else 'unpaid'
        booking.paid_amount = Decimal('0')
    db.session.flush()


# ─────────────────────────────────────────────
# Checkout
# ─────────────────────────────────────────────

def get_payment_method(code):
    code = clean_text(code)
    pm = PaymentMethod.query.filter_by(code=code, is_active=True).first() if code else None
    if not pm:
        raise ApiError('付款方式不存在或已停用')
    return pm


def get_transaction_or_404(transaction_id):
    tid = require_uuid(transaction_id, '交易 ID 格式錯誤')
    tx = db.session.get(Transaction, tid)
    if not tx:
        raise ApiError('找不到此交易', 404)
    return tx


def _optional_amount(value, message):
    if value in (None, '') or (not isinstance(value, bool) and str(value).strip() in ('0', '0.0', '0.00')):
        return Decimal('0')
    return parse_amount(value, message)


def create_transaction(data, admin_id=None):
    """建立付款交易，回傳 (交易, 儲值金/積分異動列)"""
    member = resolve_member(data.get('member_id'), data.get('line_user_id'))
    if (clean_text(data.get('transaction_type')) or 'payment') != 'payment':
        raise ValidationError('退款請使用退款功能', field='transaction_type')
    amount = parse_amount(data.get('amount'), '交易金額必須大於 0')
    pm = get_payment_method(data.get('payment_method_code'))

    booking = None
    bid = clean_uuid(data.get('booking_id'))
    if bid:
        booking = db.session.get(Booking, bid)
        if not booking or booking.member_id != member.id:
            raise ApiError('預約不屬於此會員')

    discount = _optional_amount(data.get('discount_amount'), '折扣金額格式錯誤')
    total = _optional_amount(data.get('total_amount'), '原價金額格式錯誤') or amount + discount
    wallet_amount = Decimal('0')
    if _truthy(data.get('use_wallet_payment')):
        wallet_amount = parse_amount(data.get('wallet_payment_amount') or amount,
                                     '儲值金付款金額必須大於 0')
        if wallet_amount > amount:
            raise ApiError('儲值金付款金額不可超過交易金額')

    tx = Transaction(
        transaction_number=generate_transaction_number(),
        member_id=member.id, booking_id=booking.id if booking else None,
        transaction_type='payment', amount=amount, total_amount=total,
        discount_amount=discount, wallet_amount=wallet_amount,
        payment_method_id=pm.id, payment_method_code=pm.code,
        payment_method_name=pm.name, status='completed',
        description=clean_text(data.get('description')),
        receipt_number=clean_text(data.get('receipt_number')),
        reference_number=clean_text(data.get('reference_number')),
        notes=clean_text(data.get('notes')),
        admin_notes=clean_text(data.get('admin_notes')),
        created_by=admin_id,
    )
    db.session.add(tx)
    db.session.flush()

    rows = []
    if wallet_amount > 0:
        rows.append(change_wallet(member.id, -wallet_amount, 'payment',
                                  f'交易 {tx.transaction_number} 儲值金付款',
                                  tx.id, 'transaction', admin_id))
    points = calculate_points(amount)
    if points > 0:
        rows.append(change_points(member.id, points, 'earn',
                                  f'消費 {format_amount(amount)} 獲得積分',
                                  tx.id, 'transaction', admin_id))
    tx.points_earned = points
    if booking:
        booking.transaction_id = tx.id
        refresh_booking_payment(booking)
    logger.info('[transaction] %s member=%s amount=%s method=%s',
                tx.transaction_number, member.id, amount, pm.code)
    return tx, rows


def create_refund(data, admin_id=None):
    member = resolve_member(data.get('member_id'), data.get('line_user_id'))
    oid = require_uuid(data.get('original_transaction_id'), '原交易 ID 格式錯誤')
    # 鎖住原交易，同一筆的退款依序累計
    original = Transaction.query.filter_by(id=oid).with_for_update().first()
    if not original or original.member_id != member.id \
            or original.transaction_type != 'payment' or original.status != 'completed':
        raise ApiError('找不到可退款的原交易', 404)
    amount = parse_amount(data.get('amount'), '退款金額必須大於 0')
    refunded = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.original_transaction_id == oid,
        Transaction.transaction_type == 'refund',
        Transaction.status == 'completed',
    ).scalar()
    if Decimal(str(refunded)) + amount > Decimal(original.amount):
        raise ApiError('退款金額超過可退款金額')
    pm = get_payment_method(clean_text(data.get('payment_method_code')) or original.payment_method_code)

    tx = Transaction(
        transaction_number=generate_transaction_number(),
        member_id=member.id, booking_id=original.booking_id,
        transaction_type='refund', amount=amount, total_amount=amount,
        discount_amount=Decimal('0'), wallet_amount=amount if pm.code == 'wallet' else Decimal('0'),
        payment_method_id=pm.id, payment_method_code=pm.code,
        payment_method_name=pm.name, status='completed',
        description=clean_text(data.get('reason')) or clean_text(data.get('description'))
                    or f'退款：{original.transaction_number}',
        notes=clean_text(data.get('notes')),
        original_transaction_id=original.id, created_by=admin_id,
    )
    db.session.add(tx)
    db.session.flush()

    rows = []
    if pm.code == 'wallet':
        rows.append(change_wallet(member.id, amount, 'refund',
                                  f'交易 {original.transaction_number} 退款',
                                  tx.id, 'transaction', admin_id))
    if original.booking:
        refresh_booking_payment(original.booking)
    logger.info('[refund] %s -> %s amount=%s', original.transaction_number,
                tx.transaction_number, amount)
    return tx, rows


def _sync_transaction_ledger(tx, admin_id=None):
    """交易狀態變更後，以調整列讓儲值金/積分與交易一致：完成時保留原異動，取消時沖銷為 0"""
    rows = []
    for model, field, change in ((WalletTransaction, 'amount', change_wallet),
                                 (PointTransaction, 'points', change_points)):
        entries = model.query.filter_by(reference_id=tx.id, reference_type='transaction').all()
        if not entries:
            continue
        zero = Decimal('0') if field == 'amount' else 0
        original = sum((getattr(e, field) for e in entries if e.transaction_type != 'adjustment'), zero)
        current = sum((getattr(e, field) for e in entries), zero)
        delta = (original if tx.status == 'completed' else zero) - current
        if delta:
            label = '恢復' if tx.status == 'completed' else '取消沖銷'
            rows.append(change(tx.member_id, delta, 'adjustment',
                               f'交易 {tx.transaction_number} {label}',
                               tx.id, 'transaction', admin_id))
    return rows


def update_transaction(transaction_id, data, admin_id=None):
    """回傳 (交易, 狀態變更產生的儲值金/積分調整列)"""
    tx = get_transaction_or_404(transaction_id)
    if 'payment_method_code' in data:
        pm = get_payment_method(data.get('payment_method_code'))
        tx.payment_method_id, tx.payment_method_code, tx.payment_method_name = pm.id, pm.code, pm.name
    rows = []
    if 'status' in data:
        if data.get('status') not in TRANSACTION_STATUSES:
            raise ValidationError('交易狀態錯誤', field='status')
        if tx.status != data['status']:
            tx.status = data['status']
            db.session.flush()
            rows = _sync_transaction_ledger(tx, admin_id)
    for f in ('description', 'receipt_number', 'reference_number', 'notes', 'admin_notes'):
        if f in data:
            setattr(tx, f, (data.get(f) or '').strip() or None)
    db.session.flush()
    if tx.booking:
        refresh_booking_payment(tx.booking)
    return tx, rows


def delete_transaction(transaction_id):
    tx = get_transaction_or_404(transaction_id)
    if Transaction.query.filter_by(original_transaction_id=tx.id).count():
        raise ApiError('此交易已有退款記錄，無法刪除')
    booking = tx.booking
    if booking and booking.transaction_id == tx.id:
        booking.transaction_id = None
    db.session.delete(tx)
    db.session.flush()
    if booking:
        refresh_booking_payment(booking)
    logger.info('[transaction] deleted %s', tx.transaction_number)


# ─────────────────────────────────────────────
# Public config / Auth
# ─────────────────────────────────────────────

@app.route('/api/config')
def api_config():
    return jsonify({
        'shopName': SHOP_NAME,
        'lineLoginEnabled': bool(FEATURES['enableLineLogin'] and LINE_CHANNEL_ID),
        'lineChannelId': LINE_CHANNEL_ID,
        'features': FEATURES,
        'validation': {
            'phonePattern': PHONE_PATTERN.pattern,
            'emailPattern': EMAIL_PATTERN.pattern,
            'nameMinLength': NAME_MIN_LENGTH,
            'nameMaxLength': NAME_MAX_LENGTH,
            'genders': list(GENDERS),
            'phoneMessage': PHONE_MESSAGE,
            'emailMessage': EMAIL_MESSAGE,
        },
    })


@app.route('/api/auth/line/login-url')
def line_login_url():
    if not LINE_CHANNEL_ID:
        raise ApiError('LINE Login 未設定', 500)
    state = secrets.token_urlsafe(16)
    session[LINE_STATE_KEY] = state
    redirect_uri = request.args.get('redirect_uri') or f'{APP_BASE_URL}{LINE_CALLBACK_PATH}'
    return jsonify({'success': True, 'state': state,
                    'url': line_api.build_login_url(LINE_CHANNEL_ID, redirect_uri, state,
                                                    LINE_LOGIN_SCOPE)})


@app.route('/functions/line-login')
def line_login():
    code = request.args.get('code')
    redirect_uri = request.args.get('redirect_uri') or f'{APP_BASE_URL}{LINE_CALLBACK_PATH}'
    if not code:
        return jsonify({'success': False, 'error': 'Authorization code not provided'}), 400
    if not LINE_CHANNEL_ID or not LINE_CHANNEL_SECRET:
        logger.error('[line-login] LINE_CHANNEL_ID / LINE_CHANNEL_SECRET missing')
        return jsonify({'success': False,
                        'error': 'LINE credentials not configured. Please set LINE_CHANNEL_ID and LINE_CHANNEL_SECRET'}), 500
    state = request.args.get('state')
    expected = session.pop(LINE_STATE_KEY, None)
    if expected and state != expected:
        return jsonify({'success': False, 'error': 'Invalid state parameter'}), 400

    try:
        token = line_api.exchange_code(code, redirect_uri, LINE_CHANNEL_ID, LINE_CHANNEL_SECRET)
        profile = line_api.get_profile(token['access_token'])
    except line_api.LineApiError as e:
        logger.warning('[line-login] %s', e)
        return jsonify({'success': False, 'error': str(e), 'details': e.body}), 400

    member, is_new = upsert_member_from_line(profile.get('userId'),
                                             profile.get('displayName'),
                                             profile.get('pictureUrl'))
    db.session.commit()
    save_member_session(member, token['access_token'])
    return jsonify({'success': True, 'is_new': is_new, 'member': member.to_dict(),
                    'line_user_id': member.line_user_id,
                    'access_token': token['access_token']})


@app.route('/api/auth/session')
def auth_session():
    m = current_member()
    if not m:
        return jsonify({'success': True, 'logged_in': False, 'member': None})
    return jsonify({'success': True, 'logged_in': True, 'member': m.to_dict(),
                    'expires_at': get_member_session().get('expires_at')})


@app.route('/api/auth/logout', methods=['POST'])
def auth_logout():
    clear_member_session()
    return jsonify({'success': True})


@app.route('/admin/api/login', methods=['POST'])
def admin_login():
    data = _json()
    email = (data.get('email') or '').strip().lower()
    pw = data.get('password') or ''
    a = Admin.query.filter_by(email=email).first() if email else None
    if not a or not a.check_password(pw):
        logger.warning('[admin login] failed for %s', email or '(empty)')
        return jsonify({'success': False, 'error': '帳號或密碼錯誤'}), 401
    if not a.is_active:
        return jsonify({'success': False, 'error': '此帳號已停用'}), 403
    a.last_login_at = datetime.now()
    db.session.commit()
    session.permanent = True
    session[ADMIN_SESSION_KEY] = a.id
    return jsonify({'success': True, 'admin': a.to_dict()})


@app.route('/admin/api/logout', methods=['POST'])
def admin_logout():
    session.pop(ADMIN_SESSION_KEY, None)
    return jsonify({'success': True})


@app.route('/admin/api/me')
def admin_me():
    a = get_current_admin()
    if not a:
        return jsonify({'success': False, 'error': 'Unauthorized'}), 401
    return jsonify({'success': True, 'admin': a.to_dict()})


# ─────────────────────────────────────────────
# Email verification
# ─────────────────────────────────────────────

@app.route('/api/email/send-code', methods=['POST'])
def email_send_code():
    data = _json()
    lid = session_line_user_id(data.get('line_user_id'))
    ev = generate_verification_code(data.get('email'), lid)
    if not mailer.send_verification_code(ev.email, ev.code, VERIFICATION_EXPIRY_MINUTES):
        raise ApiError('驗證碼寄送失敗，請稍後再試', 502)
    db.session.commit()
    logger.info('[email] verification code sent to %s', ev.email)
    return jsonify({'success': True, 'expires_in': VERIFICATION_EXPIRY_MINUTES * 60})


@app.route('/api/email/verify', methods=['POST'])
def email_verify():
    data = _json()
    verify_email_code(data.get('email'), data.get('code'))
    db.session.commit()
    return jsonify({'success': True, 'verified': True})


@app.route('/api/email/register', methods=['POST'])
def email_register():
    data = _json()
    member, is_new = complete_registration(
        data.get('email'), session_line_user_id(data.get('line_user_id')),
        data.get('line_display_name'), data.get('line_picture_url'),
        data.get('name'), data.get('phone'),
    )
    db.session.commit()
    save_member_session(member)
    return jsonify({'success': True, 'member': member.to_dict(), 'is_new': is_new})


@app.route('/api/email/exists')
def email_exists():
    email = (request.args.get('email') or '').strip().lower()
    if not email:
        raise ValidationError(EMAIL_MESSAGE, field='email')
    return jsonify({'exists': Member.query.filter_by(email=email).first() is not None})


@app.route('/api/email/login', methods=['POST'])
def email_login_route():
    member = email_login(_json().get('email'))
    db.session.commit()
    save_member_session(member)
    return jsonify({'success': True, 'member': member.to_dict()})


@app.route('/api/email/link-line', methods=['POST'])
def email_link_line():
    data = _json()
    lid = session_line_user_id(data.get('line_user_id'))
    if not lid:
        raise ApiError('請先使用 LINE 登入', 403)
    member = link_line_account(data.get('email'), lid,
                               data.get('line_display_name'), data.get('line_picture_url'))
    db.session.commit()
    save_member_session(member)
    return jsonify({'success': True, 'member': member.to_dict()})


# ─────────────────────────────────────────────
# Members
# ─────────────────────────────────────────────

@app.route('/api/members/me', methods=['GET'])
def my_profile():
    return jsonify({'success': True, 'member': require_member().to_dict()})


@app.route('/api/members/me', methods=['PUT'])
def update_my_profile():
    m = require_member()
    if not FEATURES['allowMemberEdit']:
        raise ApiError('目前不開放修改會員資料', 403)
    update_member_profile(m, _json())
    db.session.commit()
    return jsonify({'success': True, 'member': m.to_dict()})


@app.route('/admin/api/members', methods=['GET'])
def admin_members():
    err = check_admin()
    if err: return err
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    q = Member.query.order_by(Member.created_at.desc())
    return jsonify({'success': True, 'total': q.count(),
                    'members': [m.to_dict() for m in q.offset(offset).limit(limit).all()]})


@app.route('/admin/api/members/search')
def admin_search_members():
    err = check_admin()
    if err: return err
    return jsonify({'success': True,
                    'members': [m.to_dict() for m in search_members(request.args.get('q'))]})


@app.route('/admin/api/members', methods=['POST'])
def admin_add_member():
    err = check_admin()
    if err: return err
    m = admin_create_member(_json())
    db.session.commit()
    return jsonify({'success': True, 'member': m.to_dict()}), 201


@app.route('/admin/api/members/<mid>', methods=['GET'])
def admin_get_member(mid):
    err = check_admin()
    if err: return err
    m = get_member_or_404(mid)
    recent = (Booking.query.filter_by(member_id=m.id)
              .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
              .limit(10).all())
    d = m.to_dict()
    d['wallet'] = m.wallet.to_dict() if m.wallet else None
    d['points'] = m.point_account.to_dict() if m.point_account else None
    d['recent_bookings'] = [b.to_dict() for b in recent]
    return jsonify({'success': True, 'member': d})


@app.route('/admin/api/members/<mid>', methods=['PUT'])
def admin_edit_member(mid):
    err = check_admin()
    if err: return err
    m = admin_update_member(get_member_or_404(mid), _json())
    db.session.commit()
    return jsonify({'success': True, 'member': m.to_dict()})


@app.route('/admin/api/members/<mid>', methods=['DELETE'])
def admin_delete_member(mid):
    err = check_admin()
    if err: return err
    m = get_member_or_404(mid)
    db.session.delete(m)
    db.session.commit()
    logger.info('[member] deleted %s', mid)
    return jsonify({'success': True})


@app.route('/admin/api/stats')
def admin_stats():
    err = check_admin()
    if err: return err
    return jsonify({'success': True, 'stats': get_member_stats()})


# ─────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────

@app.route('/api/services')
def list_services():
    services = (Service.query.filter_by(is_active=True)
                .order_by(Service.sort_order, Service.name).all())
    return jsonify({'success': True,
                    'services': [s.to_dict(active_options_only=True) for s in services]})


@app.route('/api/services/<sid>')
def get_service(sid):
    s = get_service_or_404(sid, active_only=True)
    return jsonify({'success': True, 'service': s.to_dict(active_options_only=True)})


@app.route('/api/services/<sid>/options')
def get_service_options(sid):
    s = get_service_or_404(sid, active_only=True)
    return jsonify({'success': True,
                    'options': [o.to_dict() for o in s.options if o.is_active]})


@app.route('/admin/api/services', methods=['GET'])
def admin_services():
    err = check_admin()
    if err: return err
    services = Service.query.order_by(Service.sort_order, Service.name).all()
    return jsonify({'success': True, 'services': [s.to_dict() for s in services]})


@app.route('/admin/api/services', methods=['POST'])
def admin_add_service():
    err = check_admin()
    if err: return err
    data = _json()
    s = apply_service_fields(Service(price=Decimal('0'), duration_minutes=30,
                                     is_active=True, sort_order=0), data)
    db.session.add(s)
    db.session.commit()
    return jsonify({'success': True, 'service': s.to_dict()}), 201


@app.route('/admin/api/services/<sid>', methods=['PUT'])
def admin_edit_service(sid):
    err = check_admin()
    if err: return err
    s = apply_service_fields(get_service_or_404(sid), _json())
    db.session.commit()
    return jsonify({'success': True, 'service': s.to_dict()})


@app.route('/admin/api/services/<sid>', methods=['DELETE'])
def admin_delete_service(sid):
    err = check_admin()
    if err: return err
    s = get_service_or_404(sid)
    # 已有預約紀錄的服務只停用，保留歷史
    if Booking.query.filter_by(service_id=s.id).count():
        s.is_active = False
        db.session.commit()
        return jsonify({'success': True, 'deactivated': True})
    db.session.delete(s)
    db.session.commit()
    return jsonify({'success': True, 'deactivated': False})


@app.route('/admin/api/services/<sid>/options', methods=['POST'])
def admin_add_option(sid):
    err = check_admin()
    if err: return err
    s = get_service_or_404(sid)
    o = apply_option_fields(ServiceOption(price=Decimal('0'), extra_minutes=0,
                                          is_active=True, sort_order=0), _json())
    s.options.append(o)
    db.session.commit()
    return jsonify({'success': True, 'option': o.to_dict()}), 201


@app.route('/admin/api/service-options/<oid>', methods=['PUT'])
def admin_edit_option(oid):
    err = check_admin()
    if err: return err
    o = db.session.get(ServiceOption, require_uuid(oid, '選項 ID 格式錯誤'))
    if not o:
        raise ApiError('找不到此服務選項', 404)
    apply_option_fields(o, _json())
    db.session.commit()
    return jsonify({'success': True, 'option': o.to_dict()})


@app.route('/admin/api/service-options/<oid>', methods=['DELETE'])
def admin_delete_option(oid):
    err = check_admin()
    if err: return err
    o = db.session.get(ServiceOption, require_uuid(oid, '選項 ID 格式錯誤'))
    if not o:
        raise ApiError('找不到此服務選項', 404)
    # 預約保留選項名稱快照
    Booking.query.filter_by(service_option_id=o.id).update({'service_option_id': None})
    db.session.delete(o)
    db.session.commit()
    return jsonify({'success': True})


# ─────────────────────────────────────────────
# Bookings
# ─────────────────────────────────────────────

def _after_booking_created(b):
    notify_booking(b, 'booking_created')
    notify_shop_new_booking(b)
    db.session.commit()


@app.route('/api/bookings', methods=['POST'])
def api_create_booking():
    m = require_member()
    data = _json()
    # 未綁 LINE 的會員以會員 ID 佔位
    params = build_booking_params(m.line_user_id or m.id, data.get('service_id'),
                                  data.get('booking_date'), data.get('booking_time'),
                                  data.get('service_option_id'), data.get('notes'))
    b = create_booking(m, params)
    db.session.commit()
    _after_booking_created(b)
    return jsonify({'success': True, 'booking': b.to_dict()}), 201


@app.route('/functions/create-booking', methods=['POST'])
def function_create_booking():
    m = require_member()
    data = _json()
    params = build_booking_params(data.get('p_line_user_id'), data.get('p_service_id'),
                                  data.get('p_booking_date'), data.get('p_booking_time'),
                                  data.get('p_service_option_id'), data.get('p_notes'))
    if params['p_line_user_id'] != m.line_user_id:
        raise ApiError('無權限為其他會員建立預約', 403)
    b = create_booking(m, params)
    db.session.commit()
    _after_booking_created(b)
    return jsonify({'success': True, 'data': b.to_dict()})


@app.route('/api/bookings', methods=['GET'])
def my_bookings():
    m = require_member()
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    q = Booking.query.filter_by(member_id=m.id)
    status = clean_text(request.args.get('status'))
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(Booking.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({'success': True, 'bookings': [b.to_dict() for b in rows]})


@app.route('/api/bookings/<bid>/cancel', methods=['POST'])
def my_cancel_booking(bid):
    b = cancel_booking(require_member(), bid)
    db.session.commit()
    return jsonify({'success': True, 'booking': b.to_dict()})


@app.route('/api/business-hours')
def business_hours():
    rows = BusinessHour.query.order_by(BusinessHour.day_of_week).all()
    return jsonify({'success': True, 'business_hours': [h.to_dict() for h in rows]})


@app.route('/api/time-slots/available')
def available_time_slots():
    date = request.args.get('date')
    slots = get_available_time_slots(date, request.args.get('duration'))
    return jsonify({'success': True, 'date': normalize_date(date), 'slots': slots})


@app.route('/api/time-slots/check')
def check_time_slot():
    available = check_time_slot_available(request.args.get('date'), request.args.get('time'),
                                          request.args.get('duration'))
    return jsonify({'success': True, 'available': available})


@app.route('/admin/api/bookings', methods=['GET'])
def admin_bookings():
    err = check_admin()
    if err: return err
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    q = Booking.query
    status = clean_text(request.args.get('status'))
    if status:
        q = q.filter_by(status=status)
    if clean_text(request.args.get('date')):
        q = q.filter_by(booking_date=normalize_date(request.args.get('date')))
    total = q.count()
    rows = (q.order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
            .offset(offset).limit(limit).all())
    return jsonify({'success': True, 'total': total,
                    'bookings': [b.to_dict(with_member=True) for b in rows]})


@app.route('/admin/api/bookings/<bid>', methods=['GET'])
def admin_get_booking(bid):
    err = check_admin()
    if err: return err
    return jsonify({'success': True, 'booking': get_booking_or_404(bid).to_dict(with_member=True)})


@app.route('/admin/api/bookings/<bid>/status', methods=['PUT'])
def admin_booking_status(bid):
    err = check_admin()
    if err: return err
    data = _json()
    b = update_booking_status(bid, data.get('status'), data.get('admin_notes'))
    db.session.commit()
    if b.status in ('confirmed', 'cancelled'):
        notify_booking(b, f'booking_{b.status}')
        db.session.commit()
    return jsonify({'success': True, 'booking': b.to_dict(with_member=True)})


@app.route('/admin/api/bookings/<bid>', methods=['DELETE'])
def admin_delete_booking(bid):
    err = check_admin()
    if err: return err
    b = get_booking_or_404(bid)
    number = b.booking_number
    Transaction.query.filter_by(booking_id=b.id).update({'booking_id': None})
    db.session.delete(b)
    db.session.commit()
    logger.info('[booking] deleted %s', number)
    return jsonify({'success': True})


# ─────────────────────────────────────────────
# Checkout
# ─────────────────────────────────────────────

@app.route('/api/payment-methods')
def payment_methods():
    rows = PaymentMethod.query.filter_by(is_active=True).order_by(PaymentMethod.sort_order).all()
    return jsonify({'success': True, 'payment_methods': [p.to_dict() for p in rows]})


@app.route('/api/transactions')
def my_transactions():
    m = require_member()
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    q = Transaction.query.filter_by(member_id=m.id)
    if clean_text(request.args.get('type')):
        q = q.filter_by(transaction_type=request.args['type'])
    if clean_text(request.args.get('status')):
        q = q.filter_by(status=request.args['status'])
    rows = q.order_by(Transaction.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({'success': True, 'transactions': [t.to_dict(with_relations=True) for t in rows]})


@app.route('/admin/api/transactions', methods=['GET'])
def admin_transactions():
    err = check_admin()
    if err: return err
    args = request.args
    limit, offset = parse_paging(args.get('limit'), args.get('offset'))
    q = Transaction.query
    for f in ('status', 'transaction_type', 'payment_method_code'):
        if clean_text(args.get(f)):
            q = q.filter(getattr(Transaction, f) == args[f])
    if clean_uuid(args.get('member_id')):
        q = q.filter(Transaction.member_id == clean_uuid(args.get('member_id')))
    if clean_text(args.get('date_from')):
        start = datetime.strptime(normalize_date(args['date_from']), '%Y-%m-%d')
        q = q.filter(Transaction.created_at >= start)
    if clean_text(args.get('date_to')):
        end = datetime.strptime(normalize_date(args['date_to']), '%Y-%m-%d') + timedelta(days=1)
        q = q.filter(Transaction.created_at < end)
    total = q.count()
    rows = q.order_by(Transaction.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({'success': True, 'total': total,
                    'transactions': [t.to_dict(with_relations=True) for t in rows]})


@app.route('/admin/api/transactions', methods=['POST'])
def admin_create_transaction():
    err = check_admin()
    if err: return err
    tx, rows = create_transaction(_json(), admin_id=_admin_id())
    db.session.commit()
    notify_ledger_rows(rows)
    db.session.commit()
    return jsonify({'success': True, 'transaction': tx.to_dict(with_relations=True)}), 201


@app.route('/admin/api/transactions/refund', methods=['POST'])
def admin_create_refund():
    err = check_admin()
    if err: return err
    tx, rows = create_refund(_json(), admin_id=_admin_id())
    db.session.commit()
    notify_ledger_rows(rows)
    db.session.commit()
    return jsonify({'success': True, 'transaction': tx.to_dict(with_relations=True)}), 201


@app.route('/admin/api/transactions/<tid>', methods=['GET'])
def admin_get_transaction(tid):
    err = check_admin()
    if err: return err
    return jsonify({'success': True,
                    'transaction': get_transaction_or_404(tid).to_dict(with_relations=True)})


@app.route('/admin/api/transactions/<tid>', methods=['PUT'])
def admin_edit_transaction(tid):
    err = check_admin()
    if err: return err
    tx, rows = update_transaction(tid, _json(), admin_id=_admin_id())
    db.session.commit()
    notify_ledger_rows(rows)
    db.session.commit()
    return jsonify({'success': True, 'transaction': tx.to_dict(with_relations=True)})


@app.route('/admin/api/transactions/<tid>', methods=['DELETE'])
def admin_delete_transaction(tid):
    err = check_admin()
    if err: return err
    delete_transaction(tid)
    db.session.commit()
    return jsonify({'success': True})


# ─────────────────────────────────────────────
# Wallet / Points
# ─────────────────────────────────────────────

@app.route('/api/wallet')
def my_wallet():
    m = require_member()
    return jsonify({'success': True, 'wallet': m.wallet.to_dict() if m.wallet else None})


@app.route('/api/points')
def my_points():
    m = require_member()
    acct = m.point_account
    return jsonify({'success': True, 'points': acct.to_dict() if acct else None})


@app.route('/api/wallet/transactions')
def my_wallet_transactions():
    m = require_member()
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    rows = (WalletTransaction.query.filter_by(member_id=m.id)
            .order_by(WalletTransaction.created_at.desc())
            .offset(offset).limit(limit).all())
    return jsonify({'success': True, 'transactions': [r.to_dict() for r in rows]})


@app.route('/api/points/transactions')
def my_point_transactions():
    m = require_member()
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    rows = (PointTransaction.query.filter_by(member_id=m.id)
            .order_by(PointTransaction.created_at.desc())
            .offset(offset).limit(limit).all())
    return jsonify({'success': True, 'transactions': [r.to_dict() for r in rows]})


@app.route('/api/point-rules')
def point_rules():
    rows = PointRule.query.filter_by(is_active=True).order_by(PointRule.id).all()
    return jsonify({'success': True, 'rules': [r.to_dict() for r in rows]})


@app.route('/api/points/calculate')
def points_calculate():
    return jsonify({'success': True, 'points': calculate_points(request.args.get('amount', 0))})


def _ledger_response(row):
    db.session.commit()
    notify_ledger_rows([row])
    db.session.commit()
    return jsonify({'success': True, 'transaction': row.to_dict(),
                    'new_balance': row.to_dict()['new_balance']})


@app.route('/admin/api/wallet/recharge', methods=['POST'])
def admin_wallet_recharge():
    err = check_admin()
    if err: return err
    d = _json()
    return _ledger_response(recharge_wallet(d.get('member_id'), d.get('amount'),
                                            d.get('description'), d.get('reference_id'),
                                            d.get('reference_type') or 'transaction', _admin_id()))


@app.route('/admin/api/wallet/pay', methods=['POST'])
def admin_wallet_pay():
    err = check_admin()
    if err: return err
    d = _json()
    return _ledger_response(pay_with_wallet(d.get('member_id'), d.get('amount'),
                                            d.get('description'), d.get('reference_id'),
                                            d.get('reference_type') or 'transaction', _admin_id()))


@app.route('/admin/api/points/earn', methods=['POST'])
def admin_points_earn():
    err = check_admin()
    if err: return err
    d = _json()
    return _ledger_response(earn_points(d.get('member_id'), d.get('points'),
                                        d.get('description'), d.get('reference_id'),
                                        d.get('reference_type') or 'transaction', _admin_id()))


@app.route('/admin/api/points/spend', methods=['POST'])
def admin_points_spend():
    err = check_admin()
    if err: return err
    d = _json()
    return _ledger_response(spend_points(d.get('member_id'), d.get('points'),
                                         d.get('description'), d.get('reference_id'),
                                         d.get('reference_type') or 'transaction', _admin_id()))


@app.route('/admin/api/wallets')
def admin_wallets():
    err = check_admin()
    if err: return err
    rows = Wallet.query.order_by(Wallet.updated_at.desc()).all()
    return jsonify({'success': True, 'wallets': [w.to_dict(with_member=True) for w in rows]})


@app.route('/admin/api/points')
def admin_point_accounts():
    err = check_admin()
    if err: return err
    rows = PointAccount.query.order_by(PointAccount.updated_at.desc()).all()
    return jsonify({'success': True, 'points': [p.to_dict(with_member=True) for p in rows]})


# ─────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────

@app.route('/api/notifications/settings', methods=['GET'])
def my_notification_settings():
    m = require_member()
    s = get_or_create_notification_setting(m)
    db.session.commit()
    return jsonify({'success': True, 'settings': s.to_dict()})


@app.route('/api/notifications/settings', methods=['PUT'])
def update_my_notification_settings():
    m = require_member()
    s = get_or_create_notification_setting(m)
    data = _json()
    for f in NotificationSetting.EDITABLE:
        if f not in data:
            continue
        if f == 'booking_reminder_hours':
            hours = _int(data[f], 24, field=f)
            if not 1 <= hours <= 168:
                raise ValidationError('提醒時間需介於 1 到 168 小時', field=f)
            s.booking_reminder_hours = hours
        else:
            setattr(s, f, _truthy(data[f]))
    db.session.commit()
    return jsonify({'success': True, 'settings': s.to_dict()})


@app.route('/api/notifications/logs')
def my_notification_logs():
    m = require_member()
    limit, offset = parse_paging(request.args.get('limit'), request.args.get('offset'))
    q = NotificationLog.query.filter_by(member_id=m.id)
    if clean_text(request.args.get('type')):
        q = q.filter_by(notification_type=request.args['type'])
    rows = q.order_by(NotificationLog.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({'success': True, 'logs': [r.to_dict() for r in rows]})


@app.route('/functions/send-line-message', methods=['POST'])
def send_line_message():
    data = _json()
    line_user_id = clean_text(data.get('lineUserId'))
    message = data.get('message')
    if not line_user_id or not message:
        return jsonify({'success': False, 'error': 'Missing lineUserId or message'}), 400

    if not get_current_admin():
        m = current_member()
        if not m or m.line_user_id != line_user_id:
            return jsonify({'success': False, 'error': 'Unauthorized'}), 403
    if not LINE_CHANNEL_ACCESS_TOKEN:
        logger.error('[send-line-message] LINE_CHANNEL_ACCESS_TOKEN missing')
        return jsonify({'success': False, 'error': 'LINE_CHANNEL_ACCESS_TOKEN not configured'}), 500

    target = Member.query.filter_by(line_user_id=line_user_id).first()
    log = None
    if target:
        log = NotificationLog(
            member_id=target.id,
            notification_type=clean_text(data.get('notificationType')) or 'system',
            message=line_api.message_text(message),
            related_booking_id=clean_uuid(data.get('relatedBookingId')),
            related_transaction_id=clean_uuid(data.get('relatedTransactionId')),
        )
        db.session.add(log)
    try:
        line_api.push_message(LINE_CHANNEL_ACCESS_TOKEN, line_user_id,
                              [line_api.build_message(message)])
    except line_api.LineApiError as e:
        if log:
            log.status = 'failed'
            log.error_message = str(e)[:500]
            db.session.commit()
        return jsonify({'success': False, 'error': str(e)}), 502
    if log:
        log.status = 'sent'
        log.sent_at = datetime.now()
        db.session.commit()
    return jsonify({'success': True, 'message': 'Message sent successfully'})


@app.route('/admin/api/notifications/promotion', methods=['POST'])
def admin_send_promotion():
    err = check_admin()
    if err: return err
    d = _json()
    sent, skipped = send_promotion(d.get('title'), d.get('description'),
                                   d.get('start_date'), d.get('end_date'))
    db.session.commit()
    return jsonify({'success': True, 'sent': sent, 'skipped': skipped})


# ─────────────────────────────────────────────
# Seed
# ─────────────────────────────────────────────

SERVICE_SEED = [
    {'name': '螢幕保護貼', 'category': 'screen', 'price': 500, 'duration_minutes': 30,
     'description': '高透光鋼化玻璃保護貼，含施工。',
     'options': [('滿版鋼化', 300, 0), ('防窺', 400, 0), ('霧面抗指紋', 200, 0)]},
    {'name': '背蓋包膜', 'category': 'back', 'price': 800, 'duration_minutes': 60,
     'description': '機身背蓋包膜，多種材質可選。',
     'options': [('碳纖維紋', 200, 0), ('皮革紋', 300, 15)]},
    {'name': '鏡頭保護貼', 'category': 'camera', 'price': 300, 'duration_minutes': 30,
     'description': '藍寶石鏡頭保護貼。', 'options': []},
]

PAYMENT_METHOD_SEED = [
    ('cash', '現金'), ('credit_card', '信用卡'), ('line_pay', 'LINE Pay'),
    ('transfer', '銀行轉帳'), ('wallet', '儲值金'),
]

POINT_RULE_SEED = [
    ('spend_rate', '消費積分', 100, '每消費 100 元獲得 1 點', True),
    ('signup_bonus', '註冊禮', 50, '新會員註冊贈送 50 點', True),
    ('birthday_bonus', '生日禮', 100, '生日當月贈送 100 點', False),
]


def seed():
    if not Admin.query.filter_by(email=ADMIN_EMAIL.lower()).first():
        a = Admin(email=ADMIN_EMAIL.lower(), name='系統管理員', role='superadmin')
        a.set_password(ADMIN_PASSWORD)
        db.session.add(a)
    if Service.query.count() == 0:
        for i, s in enumerate(SERVICE_SEED):
            svc = Service(name=s['name'], category=s['category'], price=s['price'],
                          duration_minutes=s['duration_minutes'],
                          description=s['description'], sort_order=i, is_active=True)
            for j, (name, price, extra) in enumerate(s['options']):
                svc.options.append(ServiceOption(name=name, price=price, extra_minutes=extra,
                                                 sort_order=j, is_active=True))
            db.session.add(svc)
    if BusinessHour.query.count() == 0:
        for dow in range(7):
            db.session.add(BusinessHour(day_of_week=dow, is_open=dow != 0,
                                        open_time='11:00', close_time='21:00'))
    if TimeSlot.query.count() == 0:
        for n in range(11 * 60, 21 * 60, 30):
            db.session.add(TimeSlot(time_slot=_from_minutes(n), max_bookings=1, is_active=True))
    for i, (code, name) in enumerate(PAYMENT_METHOD_SEED):
        if not PaymentMethod.query.filter_by(code=code).first():
            db.session.add(PaymentMethod(code=code, name=name, sort_order=i, is_active=True))
    for rule_type, name, value, desc, active in POINT_RULE_SEED:
        if not PointRule.query.filter_by(rule_type=rule_type).first():
            db.session.add(PointRule(rule_type=rule_type, name=name, value=value,
                                     description=desc, is_active=active))
    db.session.commit()
    logger.info('資料庫初始化完成')


with app.app_context():
    db.create_all()
    seed()


# ─────────────────────────────────────────────
# Health Check
# ─────────────────────────────────────────────

@app.route('/health')
def health_check():
    return jsonify({'status': 'ok', 'time': datetime.now().strftime('%Y-%m-%d %H:%M:%S')}), 200


if __name__ == '__main__':
    logger.info('%s 會員預約系統啟動中 http://localhost:5000', SHOP_NAME)
    app.run(debug=DEBUG, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
