# -*- coding: utf-8 -*-
"""輸入清理與欄位驗證

前端偶爾會把 "0"、"null"、"undefined" 之類的字串當成 UUID 送上來，
這裡集中處理，避免這些值進到資料庫層。
"""
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)

PLACEHOLDER_VALUES = {'', '0', 'null', 'undefined', 'false', 'none'}

PHONE_PATTERN = re.compile(r'^09\d{8}$')
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
STRICT_EMAIL_PATTERN = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')
TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$')

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
GENDERS = ('male', 'female', 'other', 'prefer_not_to_say')

PHONE_MESSAGE = '請輸入有效的手機號碼（例如：0912345678）'
EMAIL_MESSAGE = '請輸入有效的 Email 地址'


class ValidationError(ValueError):
    """使用者輸入錯誤，對應 HTTP 400"""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


# ─────────────────────────────────────────────
# Placeholder / UUID
# ─────────────────────────────────────────────

def is_placeholder(value) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return str(value).strip().lower() in PLACEHOLDER_VALUES


def is_uuid(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    return bool(UUID_PATTERN.match(str(value).strip()))


def clean_uuid(value):
    """有效的 UUID 字串，其餘一律回傳 None"""
    if is_placeholder(value) or not is_uuid(value):
        return None
    return str(value).strip().lower()


def require_uuid(value, message='ID 格式錯誤'):
    if is_placeholder(value):
        raise ValidationError(message)
    cleaned = clean_uuid(value)
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def clean_text(value):
    if is_placeholder(value):
        return None
    return str(value).strip()


def assert_no_placeholders(params: dict):
    for key, value in params.items():
        if is_placeholder(value):
            raise ValidationError(f'參數 {key} 的值無效', field=key)


# ─────────────────────────────────────────────
# Date / Time
# ─────────────────────────────────────────────

def normalize_date(value, message='日期格式錯誤'):
    text = clean_text(value)
    if not text:
        raise ValidationError(message)
    try:
        return datetime.strptime(text, '%Y-%m-%d').strftime('%Y-%m-%d')
    except ValueError:
        raise ValidationError(message)


def normalize_time(value, message='時間格式錯誤'):
    text = clean_text(value)
    if not text or not TIME_PATTERN.match(text):
        raise ValidationError(message)
    return text[:5]


# ─────────────────────────────────────────────
# Booking RPC parameters
# ─────────────────────────────────────────────

def build_booking_params(line_user_id, service_id, booking_date, booking_time,
                         service_option_id=None, notes=None) -> dict:
    """組出建立預約用的參數。

    有服務選項時回傳 6 個鍵（含 p_service_option_id），否則 5 個；
    p_notes 只有在有內容時才加入。無效的選項 ID 直接丟棄，不會送出。
    """
    if any(is_placeholder(v) for v in (line_user_id, booking_date, booking_time)) \
            or service_id is None or str(service_id).strip() == '':
        raise ValidationError('缺少必要參數')

    service_id_str = str(service_id).strip()
    if is_placeholder(service_id_str):
        raise ValidationError('服務 ID 無效', field='p_service_id')
    if not is_uuid(service_id_str):
        raise ValidationError('服務 ID 格式錯誤', field='p_service_id')

    params = {
        'p_line_user_id': str(line_user_id).strip(),
        'p_service_id': service_id_str.lower(),
        'p_booking_date': normalize_date(booking_date, '預約日期格式錯誤'),
        'p_booking_time': normalize_time(booking_time, '預約時間格式錯誤'),
    }

    option_id = clean_uuid(service_option_id)
    if option_id:
        params['p_service_option_id'] = option_id

    note_text = clean_text(notes)
    if note_text:
        params['p_notes'] = note_text

    assert_no_placeholders(params)
    return params


# ─────────────────────────────────────────────
# Field validators
# ─────────────────────────────────────────────

def validate_member_name(name):
    text = (name or '').strip() if isinstance(name, str) else ''
    if len(text) < NAME_MIN_LENGTH:
        raise ValidationError(f'姓名至少需要 {NAME_MIN_LENGTH} 個字元', field='name')
    if len(text) > NAME_MAX_LENGTH:
        raise ValidationError(f'姓名不可超過 {NAME_MAX_LENGTH} 個字元', field='name')
    return text


def validate_phone(phone):
    text = clean_text(phone)
    if not text:
        return None
    if not PHONE_PATTERN.match(text):
        raise ValidationError(PHONE_MESSAGE, field='phone')
    return text


def validate_email(email):
    text = clean_text(email)
    if not text:
        return None
    if not EMAIL_PATTERN.match(text):
        raise ValidationError(EMAIL_MESSAGE, field='email')
    return text.lower()


def is_valid_email(email) -> bool:
    return bool(email) and bool(STRICT_EMAIL_PATTERN.match(str(email).strip()))


def validate_gender(gender):
    text = clean_text(gender)
    if not text:
        return None
    if text not in GENDERS:
        raise ValidationError('性別選項錯誤', field='gender')
    return text


def validate_birthday(birthday):
    if not clean_text(birthday):
        return None
    value = normalize_date(birthday, '生日格式錯誤')
    if value > datetime.now().strftime('%Y-%m-%d'):
        raise ValidationError('生日不可晚於今天', field='birthday')
    return value


# ─────────────────────────────────────────────
# Numbers / paging
# ─────────────────────────────────────────────

def parse_amount(value, message='金額必須大於 0') -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(message)
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ValidationError(message)
        # 先取到分再判斷，0.001 之類會變成 0
        amount = amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(message)
    if amount <= 0:
        raise ValidationError(message)
    return amount


def parse_points(value, message='點數必須大於 0') -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(message)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(message)
    if not number.is_finite() or number != number.to_integral_value() or number <= 0:
        raise ValidationError(message)
    return int(number)


def parse_paging(limit=None, offset=None, default=50, maximum=200):
    try:
        limit = int(limit) if limit not in (None, '') else default
        offset = int(offset) if offset not in (None, '') else 0
    except (TypeError, ValueError):
        raise ValidationError('分頁參數錯誤')
    return max(1, min(limit, maximum)), max(0, offset)
