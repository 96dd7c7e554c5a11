# -*- coding: utf-8 -*-
"""LINE Login / Messaging API 呼叫"""
import logging
from typing import Any
from urllib.parse import urlencode

import requests as http_requests

logger = logging.getLogger(__name__)

LINE_AUTHORIZE_URL = 'https://access.line.me/oauth2/v2.1/authorize'
LINE_TOKEN_URL     = 'https://api.line.me/oauth2/v2.1/token'
LINE_PROFILE_URL   = 'https://api.line.me/v2/profile'
LINE_PUSH_URL      = 'https://api.line.me/v2/bot/message/push'

DEFAULT_SCOPE = 'profile openid email'
MAX_MESSAGES = 5


class LineApiError(RuntimeError):
    def __init__(self, message, status_code=None, body=''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def build_login_url(channel_id: str, redirect_uri: str, state: str,
                    scope: str = DEFAULT_SCOPE) -> str:
    params = {
        'response_type': 'code',
        'client_id': channel_id,
        'redirect_uri': redirect_uri,
        'state': state,
        'scope': scope or DEFAULT_SCOPE,
    }
    return f'{LINE_AUTHORIZE_URL}?{urlencode(params)}'


def exchange_code(code: str, redirect_uri: str, channel_id: str, channel_secret: str,
                  timeout: float = 10) -> dict[str, Any]:
    """authorization code 換 access token"""
    if not code:
        raise LineApiError('Authorization code not provided')
    try:
        resp = http_requests.post(
            LINE_TOKEN_URL,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
            data={
                'grant_type':    'authorization_code',
                'code':          code,
                'redirect_uri':  redirect_uri or '',
                'client_id':     channel_id,
                'client_secret': channel_secret,
            },
            timeout=timeout,
        )
    except http_requests.RequestException as e:
        raise LineApiError(f'Failed to get access token: {e}') from e
    if not resp.ok:
        logger.error('[LINE token] %s: %s', resp.status_code, resp.text[:300])
        raise LineApiError(f'Failed to get access token: {resp.text}',
                           status_code=resp.status_code, body=resp.text)
    try:
        data = resp.json()
    except ValueError as e:
        raise LineApiError('Failed to get access token: invalid response', body=resp.text) from e
    if not data.get('access_token'):
        raise LineApiError('Failed to get access token: empty response', body=resp.text)
    return data


def get_profile(access_token: str, timeout: float = 10) -> dict[str, Any]:
    try:
        resp = http_requests.get(
            LINE_PROFILE_URL,
            headers={'Authorization': f'Bearer {access_token}'},
            timeout=timeout,
        )
    except http_requests.RequestException as e:
        raise LineApiError(f'Failed to get user profile: {e}') from e
    if not resp.ok:
        logger.error('[LINE profile] %s: %s', resp.status_code, resp.text[:300])
        raise LineApiError(f'Failed to get user profile: {resp.text}',
                           status_code=resp.status_code, body=resp.text)
    try:
        return resp.json()
    except ValueError as e:
        raise LineApiError('Failed to get user profile: invalid response', body=resp.text) from e


def build_message(message) -> dict[str, Any]:
    if isinstance(message, dict) and message.get('type') == 'flex':
        return message
    return {'type': 'text', 'text': str(message)}


def message_text(message) -> str:
    if isinstance(message, dict):
        return message.get('altText') or 'Flex Message'
    if isinstance(message, str):
        return message
    return 'Flex Message'


def push_message(channel_access_token: str, to: str, messages: list,
                 timeout: float = 10) -> None:
    token = (channel_access_token or '').strip()
    target = (to or '').strip()
    if not token:
        raise LineApiError('LINE_CHANNEL_ACCESS_TOKEN 未設定')
    if not target:
        raise LineApiError('push target is empty')
    if not messages:
        return
    try:
        resp = http_requests.post(
            LINE_PUSH_URL,
            headers={'Content-Type': 'application/json',
                     'Authorization': f'Bearer {token}'},
            json={'to': target, 'messages': messages[:MAX_MESSAGES]},
            timeout=timeout,
        )
    except http_requests.RequestException as e:
        raise LineApiError(f'LINE API 連線錯誤: {e}') from e
    if not resp.ok:
        logger.error('[LINE push] %s: %s', resp.status_code, resp.text[:300])
        raise LineApiError(f'LINE API 錯誤: {resp.text}',
                           status_code=resp.status_code, body=resp.text)
