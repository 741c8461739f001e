"""Authentication helpers for the platform API.

This module centralizes how credentials are resolved (environment variables
first, then a named profile in the simops config file) and how an
authenticated httpx client is built. Client-credential tokens are cached on
disk and reused until shortly before they expire, so repeated CLI calls do
not hit the auth server every time.
"""

from __future__ import annotations

import configparser
import json
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from simops.core.errors import AuthError

DEFAULT_API_URL = "https://api.resim.ai/v1/"
DEFAULT_AUTH_URL = "https://resim.us.auth0.com/"
TOKEN_AUDIENCE = "https://api.resim.ai"
DEFAULT_PROFILE = "default"

_ENV_PREFIX = "SIMOPS_"
_CONFIG_FILE_ENV = "SIMOPS_CONFIG_FILE"
_CACHE_DIR_ENV = "SIMOPS_CACHE_DIR"
_CACHE_DISABLE_ENV = "SIMOPS_TOKEN_CACHE_DISABLE"
_EXPIRY_MARGIN_SECONDS = 60
_HTTP_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class Credentials:
    """
    Resolved connection settings for one profile.

    Either token (a pre-issued bearer token) or client_id and client_secret
    must be set.
    """

    profile: str
    api_url: str
    auth_url: str
    token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


def _sanitize_url(url: str) -> str:
    """
    Normalize a service URL.

    - Removes query strings (e.g. '?o=123')
    - Collapses trailing slashes to exactly one
    """
    url = url.strip().split("?", 1)[0]
    return url.rstrip("/") + "/"


def config_path() -> Path:
    """Return the simops config file path, honoring the env override."""
    override = os.getenv(_CONFIG_FILE_ENV)
    if override:
        return Path(override)
    return Path.home() / ".simops" / "config.ini"


def _read_profile(profile: str | None) -> dict[str, str]:
    """Return the keys of a config profile; an explicit unknown profile is an error."""
    path = config_path()
    parser = configparser.ConfigParser()
    if path.exists():
        try:
            parser.read(path)
        except configparser.Error as exc:
            raise AuthError(f"unable to read config file {path}: {exc}") from exc

    name = profile or DEFAULT_PROFILE
    if parser.has_section(name):
        return dict(parser.items(name))
    if profile:
        raise AuthError(f"profile '{profile}' not found in {path}")
    return {}


def load_credentials(profile: str | None = None, url: str | None = None) -> Credentials:
    """
    Resolve credentials for a profile.

    Environment variables (SIMOPS_URL, SIMOPS_AUTH_URL, SIMOPS_TOKEN,
    SIMOPS_CLIENT_ID, SIMOPS_CLIENT_SECRET) take precedence over the
    profile's keys (url, auth_url, token, client_id, client_secret). An
    explicit url argument wins over both.

    Raises:
        AuthError: If no usable credentials are configured.
    """
    section = _read_profile(profile)

    def _get(key: str) -> str | None:
        return os.getenv(_ENV_PREFIX + key.upper()) or section.get(key) or None

    creds = Credentials(
        profile=profile or DEFAULT_PROFILE,
        api_url=_sanitize_url(url or _get("url") or DEFAULT_API_URL),
        auth_url=_sanitize_url(_get("auth_url") or DEFAULT_AUTH_URL),
        token=_get("token"),
        client_id=_get("client_id"),
        client_secret=_get("client_secret"),
    )
    if creds.token:
        return creds
    if not creds.client_id:
        raise AuthError(
            "client-id must be specified (set SIMOPS_CLIENT_ID or client_id in "
            f"profile '{creds.profile}')"
        )
    if not creds.client_secret:
        raise AuthError("client-secret must be specified for non-interactive login")
    return creds


class TokenCache:
    """On-disk cache of access tokens, one file per profile and client id."""

    def __init__(self, creds: Credentials):
        self.creds = creds
        self.path = self._build_cache_path()

    def _build_cache_path(self) -> Path:
        cache_root = os.getenv(_CACHE_DIR_ENV)
        if cache_root:
            base = Path(cache_root)
        else:
            xdg = os.getenv("XDG_CACHE_HOME")
            base = Path(xdg) if xdg else Path.home() / ".cache"
        key = f"{self.creds.profile}@{self.creds.client_id}@{self.creds.auth_url}"
        safe_key = re.sub(r"[^A-Za-z0-9_.-]+", "_", key)
        return base / "simops" / f"token_{safe_key}.json"

    @staticmethod
    def enabled() -> bool:
        disabled = os.getenv(_CACHE_DISABLE_ENV, "").strip().lower()
        return disabled not in {"1", "true", "yes"}

    def load(self) -> str | None:
        """Return a cached token that is still valid, if any."""
        if not self.enabled() or not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError):
            return None
        token = payload.get("access_token")
        expires_at = payload.get("expires_at")
        if not isinstance(token, str) or not isinstance(expires_at, (int, float)):
            return None
        if time.time() > float(expires_at) - _EXPIRY_MARGIN_SECONDS:
            return None
        return token

    def store(self, token: str, expires_at: float) -> None:
        """Persist a token with its absolute expiry time."""
        if not self.enabled():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"access_token": token, "expires_at": expires_at})
        # O_CREAT mode does not apply to an existing file.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as fh:
            os.fchmod(fh.fileno(), 0o600)
            fh.write(payload)


def fetch_token(creds: Credentials, http: httpx.Client | None = None) -> tuple[str, float]:
    """
    Exchange client credentials for an access token.

    Returns:
        The access token and its absolute expiry as a UNIX timestamp.
    """
    own_client = http is None
    http = http or httpx.Client(timeout=_HTTP_TIMEOUT_SECONDS)
    try:
        response = http.post(
            f"{creds.auth_url}oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": creds.client_id or "",
                "client_secret": creds.client_secret or "",
                "audience": TOKEN_AUDIENCE,
            },
        )
    except httpx.HTTPError as exc:
        raise AuthError(f"authentication request failed: {exc}") from exc
    finally:
        if own_client:
            http.close()

    if not response.is_success:
        raise AuthError(
            f"authentication failed with status {response.status_code}: {response.text}"
        )
    try:
        payload = response.json()
        token = str(payload["access_token"])
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthError("authentication response has no access token") from exc
    expires_in = payload.get("expires_in")
    ttl = float(expires_in) if isinstance(expires_in, (int, float)) else 3600.0
    return token, time.time() + ttl


def get_access_token(creds: Credentials, http: httpx.Client | None = None) -> str:
    """Return a bearer token for creds, using the on-disk cache when possible."""
    if creds.token:
        return creds.token
    cache = TokenCache(creds)
    cached = cache.load()
    if cached:
        return cached
    token, expires_at = fetch_token(creds, http)
    try:
        cache.store(token, expires_at)
    except OSError:
        # A read-only home directory only costs a token exchange per call.
        pass
    return token


def get_client(
    profile: str | None = None,
    url: str | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """
    Create and return an authenticated httpx client for the platform API.

    Args:
        profile: Optional profile name from the simops config file.
        url: Optional API URL overriding the configured one.
        transport: Optional httpx transport (used by tests).

    Raises:
        AuthError: If credentials are missing or the token exchange fails.
    """
    creds = load_credentials(profile, url)
    auth_http = httpx.Client(timeout=_HTTP_TIMEOUT_SECONDS, transport=transport)
    try:
        token = get_access_token(creds, auth_http)
    finally:
        auth_http.close()
    return httpx.Client(
        base_url=creds.api_url,
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        timeout=_HTTP_TIMEOUT_SECONDS,
        transport=transport,
    )
