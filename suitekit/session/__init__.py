"""
Session Module.

Run-scoped caching of authenticated sessions:
- SessionCache: at-most-once session creation per SessionKey.
- api_login / cached_login: API login action and its cached form.
"""

from suitekit.session.cache import (
    CachedSession,
    SessionCache,
    SessionCreationError,
    SessionKey,
    fingerprint,
)
from suitekit.session.login import api_login, cached_login

__all__ = [
    "CachedSession",
    "SessionCache",
    "SessionCreationError",
    "SessionKey",
    "api_login",
    "cached_login",
    "fingerprint",
]
