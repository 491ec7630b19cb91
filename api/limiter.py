"""
api/limiter.py -- The one slowapi Limiter shared by api/main.py and the auth routes.

Limits are per client IP and held in process memory. Counters are not shared
between workers; run behind a proxy with its own limits for multi-process
deployments.

Limit strings come from Settings at request time (LOGIN_RATE_LIMIT,
OTP_REQUEST_RATE_LIMIT), so they can be tuned without a code change.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def otp_request_limit() -> str:
    return get_settings().otp_request_rate_limit
