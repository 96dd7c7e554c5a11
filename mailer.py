# -*- coding: utf-8 -*-
"""Email 寄送：Gmail API（OAuth2）> SendGrid > Gmail SMTP"""
import base64
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

import requests as http_requests

logger = logging.getLogger(__name__)

SENDGRID_API_KEY     = os.environ.get('SENDGRID_API_KEY', '')
GMAIL_USER           = os.environ.get('GMAIL_USER', '')
GMAIL_APP_PASS       = os.environ.get('GMAIL_APP_PASS', '')
MAIL_FROM            = os.environ.get('MAIL_FROM', GMAIL_USER)
GOOGLE_CLIENT_ID     = os.environ.get('GOOGLE_CLIENT_ID', '')
GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')
GOOGLE_REFRESH_TOKEN = os.environ.get('GOOGLE_REFRESH_TOKEN', '')

SHOP_NAME               = os.environ.get('SHOP_NAME', '手機貼膜專門店')
SHOP_NOTIFICATION_EMAIL = os.environ.get('SHOP_NOTIFICATION_EMAIL', '')
APP_BASE_URL            = os.environ.get('APP_BASE_URL', 'http://localhost:5000')

GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GMAIL_SEND_URL   = 'https://gmail.googleapis.com/gmail/v1/users/me/messages/send'
SENDGRID_URL     = 'https://api.sendgrid.com/v3/mail/send'

WEEKDAYS = '一二三四五六日'


def email_backend():
    if GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN:
        return 'gmail_api'
    if SENDGRID_API_KEY:
        return 'sendgrid'
    if GMAIL_USER and GMAIL_APP_PASS:
        return 'smtp'
    return None


def send_email(to_addr: str, subject: str, body_html: str) -> bool:
    if not to_addr:
        return False
    backend = email_backend()
    if backend == 'gmail_api':
        return _send_via_gmail_api(to_addr, subject, body_html)
    if backend == 'sendgrid':
        return _send_via_sendgrid(to_addr, subject, body_html)
    if backend == 'smtp':
        return _send_via_smtp(to_addr, subject, body_html)
    logger.warning('[Email] no mail backend configured, skip sending to %s', to_addr)
    return False


def _mime(to_addr, subject, body_html, from_addr):
    msg = MIMEMultipart('alternative')
    msg['Subject'] = subject
    msg['From']    = from_addr
    msg['To']      = to_addr
    msg.attach(MIMEText(body_html, 'html', 'utf-8'))
    return msg


def _send_via_gmail_api(to_addr, subject, body_html) -> bool:
    try:
        token_resp = http_requests.post(
            GOOGLE_TOKEN_URL,
            data={
                'client_id':     GOOGLE_CLIENT_ID,
                'client_secret': GOOGLE_CLIENT_SECRET,
                'refresh_token': GOOGLE_REFRESH_TOKEN,
                'grant_type':    'refresh_token',
            },
            timeout=10,
        )
        access_token = token_resp.json().get('access_token')
        if not access_token:
            logger.error('[Gmail API] refresh token exchange failed: %s', token_resp.status_code)
            return False
        raw = base64.urlsafe_b64encode(
            _mime(to_addr, subject, body_html, MAIL_FROM or GMAIL_USER).as_bytes()).decode('utf-8')
        resp = http_requests.post(
            GMAIL_SEND_URL,
            headers={'Authorization': f'Bearer {access_token}',
                     'Content-Type': 'application/json'},
            json={'raw': raw},
            timeout=15,
        )
    except http_requests.RequestException as e:
        logger.error('[Gmail API] %s', e)
        return False
    if resp.status_code != 200:
        logger.error('[Gmail API] %s: %s', resp.status_code, resp.text[:300])
        return False
    logger.info('[Gmail API] sent to %s', to_addr)
    return True


def _send_via_sendgrid(to_addr, subject, body_html) -> bool:
    payload = {
        'personalizations': [{'to': [{'email': to_addr}]}],
        'from': {'email': MAIL_FROM or 'noreply@example.com'},
        'subject': subject,
        'content': [{'type': 'text/html', 'value': body_html}],
    }
    try:
        resp = http_requests.post(
            SENDGRID_URL,
            headers={'Authorization': f'Bearer {SENDGRID_API_KEY}',
                     'Content-Type': 'application/json'},
            json=payload,
            timeout=15,
        )
    except http_requests.RequestException as e:
        logger.error('[SendGrid] %s', e)
        return False
    if resp.status_code not in (200, 202):
        # 403 = 寄件人未驗證；401 = API Key 錯誤
        logger.error('[SendGrid] %s: %s', resp.status_code, resp.text[:300])
        return False
    logger.info('[SendGrid] sent to %s', to_addr)
    return True


def _send_via_smtp(to_addr, subject, body_html) -> bool:
    from_addr = MAIL_FROM or GMAIL_USER
    try:
        with smtplib.SMTP_SSL('smtp.gmail.com', 465, timeout=15) as s:
            s.login(GMAIL_USER, GMAIL_APP_PASS)
            s.sendmail(from_addr, to_addr,
                       _mime(to_addr, subject, body_html, from_addr).as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error('[Gmail SMTP] %s', e)
        return False
    logger.info('[Gmail SMTP] sent to %s', to_addr)
    return True


# ─────────────────────────────────────────────
# Mails
# ─────────────────────────────────────────────

def format_date_zh(date_str):
    """'2026-10-20' -> '2026年10月20日 (週二)'，無法解析時原樣回傳"""
    try:
        d = datetime.strptime(date_str, '%Y-%m-%d')
    except (TypeError, ValueError):
        return date_str or '未知'
    return f'{d.year}年{d.month}月{d.day}日 (週{WEEKDAYS[d.weekday()]})'


def send_verification_code(email: str, code: str, expiry_minutes: int = 10) -> bool:
    body = (
        f'<p>{escape(SHOP_NAME)} 會員您好：</p>'
        f'<p>您的 Email 驗證碼為 <strong style="font-size:22px;letter-spacing:4px">{escape(code)}</strong></p>'
        f'<p>驗證碼將於 {expiry_minutes} 分鐘後失效，請勿提供給他人。</p>'
        f'<p style="color:#999">© {datetime.now().year} {escape(SHOP_NAME)}</p>'
    )
    return send_email(email, f'【{SHOP_NAME}】Email 驗證碼', body)


def send_booking_notification_to_shop(booking: dict) -> bool:
    if not SHOP_NOTIFICATION_EMAIL:
        return False
    rows = [
        ('會員姓名', booking.get('member_name') or '未提供'),
        ('會員電話', booking.get('member_phone') or '未提供'),
        ('會員 Email', booking.get('member_email') or '未提供'),
        ('服務項目', booking.get('service_name') or '未知服務'),
        ('服務選項', booking.get('service_option_name') or '無'),
        ('預約日期', format_date_zh(booking.get('booking_date'))),
        ('預約時間', (booking.get('booking_time') or '未知')[:5]),
        ('備註', booking.get('notes') or '無'),
        ('預約編號', booking.get('booking_number') or booking.get('id') or '未知'),
    ]
    table = ''.join(
        f'<tr><td style="padding:4px 12px;color:#666">{escape(label)}</td>'
        f'<td style="padding:4px 12px">{escape(str(value))}</td></tr>'
        for label, value in rows
    )
    body = (
        f'<h3>{escape(SHOP_NAME)} 新預約通知</h3>'
        f'<table>{table}</table>'
        f'<p><a href="{APP_BASE_URL}/admin/bookings.html">前往管理後台</a></p>'
        f'<p style="color:#999">{datetime.now().strftime("%Y-%m-%d %H:%M")}</p>'
    )
    return send_email(SHOP_NOTIFICATION_EMAIL,
                      f'【新預約】{booking.get("service_name", "")} – {booking.get("booking_date", "")}',
                      body)
