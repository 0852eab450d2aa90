"""
API Login Action.

The session-creation action shipped with suitekit: logs an actor in against
the environment's API and returns an authenticated ``requests.Session``.
``cached_login`` routes it through the run's SessionCache so every test after
the first reuses the same session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import requests
from loguru import logger

from suitekit.session.cache import SessionCache, SessionCreationError, SessionKey

if TYPE_CHECKING:
    from suitekit.config.resolver import Credentials, EffectiveConfig

DEFAULT_LOGIN_ENDPOINT = "/auth/login"
DEFAULT_TIMEOUT_SEC = 10.0
TOKEN_FIELDS = ("token", "accessToken", "access_token")


def _timeout_from_config(config: "EffectiveConfig") -> float:
    timeout_ms = config.get("responseTimeout")
    if isinstance(timeout_ms, (int, float)) and timeout_ms > 0:
        return timeout_ms / 1000.0
    return DEFAULT_TIMEOUT_SEC


def api_login(
    config: "EffectiveConfig",
    credentials: Optional["Credentials"] = None,
    *,
    endpoint: str = DEFAULT_LOGIN_ENDPOINT,
    timeout_sec: Optional[float] = None,
) -> requests.Session:
    """
    Log in through the API and return an authenticated HTTP session.

    Args:
        config: The run's effective configuration (provides api_url).
        credentials: Actor credentials; defaults to the environment's.
        endpoint: Login path appended to api_url.
        timeout_sec: Request timeout; defaults to responseTimeout or 10 s.

    Returns:
        requests.Session with a Bearer Authorization header.

    Raises:
        SessionCreationError: On connection errors, non-2xx responses, or a
                              response without a token.
    """
    credentials = credentials or config.credentials
    if not credentials:
        raise SessionCreationError(
            f"No credentials configured for environment '{config.name}'"
        )
    if not config.api_url:
        raise SessionCreationError(
            f"No apiUrl configured for environment '{config.name}'"
        )

    url = f"{config.api_url.rstrip('/')}/{endpoint.lstrip('/')}"
    timeout = timeout_sec if timeout_sec is not None else _timeout_from_config(config)

    session = requests.Session()
    session.headers.update({
        "Content-Type": "application/json",
        "Accept": "application/json",
    })

    logger.debug(f"API login POST {url} as {credentials.identifier}")
    try:
        response = session.post(
            url,
            json={"email": credentials.identifier, "password": credentials.secret},
            timeout=timeout,
        )
        response.raise_for_status()
        body: Any = response.json()
    except requests.exceptions.HTTPError as e:
        session.close()
        status_code = e.response.status_code if e.response is not None else None
        raise SessionCreationError(
            f"Login rejected for {credentials.identifier} (status={status_code})"
        ) from e
    except requests.exceptions.RequestException as e:
        session.close()
        raise SessionCreationError(f"Login request to {url} failed: {e}") from e
    except ValueError as e:
        session.close()
        raise SessionCreationError(f"Login response from {url} is not JSON") from e

    token = None
    if isinstance(body, dict):
        token = next((body[f] for f in TOKEN_FIELDS if body.get(f)), None)
    if not token:
        session.close()
        raise SessionCreationError(
            f"Login response from {url} contains no token "
            f"(expected one of {', '.join(TOKEN_FIELDS)})"
        )

    session.headers["Authorization"] = f"Bearer {token}"
    logger.info(f"Logged in as {credentials.identifier} on '{config.environment_label}'")
    return session


def cached_login(
    cache: SessionCache,
    config: "EffectiveConfig",
    credentials: Optional["Credentials"] = None,
    *,
    actor: Optional[str] = None,
    **login_kwargs: Any,
) -> requests.Session:
    """
    Return the run's session for an actor, logging in only on first use.

    Args:
        cache: The run's SessionCache.
        config: The run's effective configuration.
        credentials: Actor credentials; defaults to the environment's.
        actor: Optional actor label used in the cache key.
        **login_kwargs: Passed to api_login (endpoint, timeout_sec).
    """
    credentials = credentials or config.credentials
    key = SessionKey.for_credentials(credentials.identifier, credentials.secret, actor)
    return cache.get_or_create(
        key, lambda: api_login(config, credentials, **login_kwargs)
    )
