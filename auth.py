"""Shared-passphrase admin session stored in the Flask session cookie."""

import hmac
import secrets
import time
from datetime import timedelta
from functools import wraps

from flask import current_app, session

from errors import AuthenticationError
from logging_config import get_logger

logger = get_logger(__name__)

SESSION_KEY = 'admin_session'


def _session_duration() -> timedelta:
    return timedelta(minutes=current_app.config.get('ADMIN_SESSION_MINUTES', 30))


def authenticate(password) -> bool:
    expected = current_app.config['ADMIN_PASSWORD']
    if not isinstance(password, str) or not hmac.compare_digest(
        password.encode('utf-8'), expected.encode('utf-8')
    ):
        logger.warning("Admin login failed")
        return False

    now = time.time()
    session[SESSION_KEY] = {
        'is_authenticated': True,
        'login_time': now,
        'last_activity': now,
        'session_id': secrets.token_hex(8),
    }
    logger.info("Admin logged in", extra={"session_id": session[SESSION_KEY]['session_id']})
    return True


def is_admin_authenticated() -> bool:
    info = session.get(SESSION_KEY)
    if not info:
        return False
    if time.time() - info.get('last_activity', 0) > _session_duration().total_seconds():
        clear_admin_session()
        return False
    return bool(info.get('is_authenticated'))


def touch() -> None:
    info = session.get(SESSION_KEY)
    if info:
        info['last_activity'] = time.time()
        session[SESSION_KEY] = info


def clear_admin_session() -> None:
    session.pop(SESSION_KEY, None)


def get_session_info():
    return session.get(SESSION_KEY)


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_admin_authenticated():
            raise AuthenticationError()
        touch()
        return f(*args, **kwargs)
    return decorated_function
