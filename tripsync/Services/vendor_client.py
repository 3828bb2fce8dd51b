# tripsync/Services/vendor_client.py
"""
GPS51 openapi client.

Responsibilities:
- Login (MD5-hashed password) and token reuse, with one transparent
  re-login when the vendor reports an expired token
- Fixed minimum interval between consecutive calls
- Map transport and vendor status codes onto the pipeline's exceptions:
    network / timeout / 5xx / non-JSON → TransientUpstreamError
    HTTP 429 or a rate-limit status    → RateLimitError
    other non-zero status              → VendorApiError

Every call is synchronous and bounded by VENDOR_TIMEOUT_S.

Usage:
    client = Gps51Client.from_settings()
    records = client.query_track("358899051234567", start, end)
"""

import hashlib
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from tripsync.Core.config import settings
from tripsync.Core.exceptions import (
    ConfigurationError,
    RateLimitError,
    TransientUpstreamError,
    VendorApiError,
    VendorAuthError,
)

logger = logging.getLogger(__name__)

VENDOR_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class Gps51Client:
    """
    Thin synchronous wrapper over the GPS51 ``/openapi?action=...`` surface.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout_s: float = 30.0,
        min_interval_s: float = 0.2,
        rate_limit_codes: Iterable[int] = (8902,),
        token_expired_codes: Iterable[int] = (9903, 9906),
        tz_offset_h: float = 8.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.min_interval_s = max(0.0, min_interval_s)
        self.rate_limit_codes = set(rate_limit_codes)
        self.token_expired_codes = set(token_expired_codes)
        self.vendor_tz = timezone(timedelta(hours=tz_offset_h))

        self._http = httpx.Client(timeout=httpx.Timeout(timeout_s), transport=transport)
        self._sleep = sleep
        self._clock = clock
        self._last_call_at: Optional[float] = None
        # Shared by the scheduler thread and request threads
        self._pace_lock = threading.Lock()
        self._auth_lock = threading.RLock()

        self.token: Optional[str] = None
        self.server_id: Optional[str] = None

    @classmethod
    def from_settings(cls, **overrides) -> "Gps51Client":
        """
        Build a client from the global settings.

        Raises:
            ConfigurationError: vendor URL or credentials missing
        """
        missing = [
            name for name in ("VENDOR_BASE_URL", "VENDOR_USERNAME", "VENDOR_PASSWORD")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError(f"Vendor API not configured: missing {', '.join(missing)}")

        kwargs = dict(
            timeout_s=settings.VENDOR_TIMEOUT_S,
            min_interval_s=settings.VENDOR_MIN_CALL_INTERVAL_S,
            rate_limit_codes=settings.VENDOR_RATE_LIMIT_CODES,
            token_expired_codes=settings.VENDOR_TOKEN_EXPIRED_CODES,
            tz_offset_h=settings.VENDOR_TIMEZONE_OFFSET_H,
        )
        kwargs.update(overrides)
        return cls(settings.VENDOR_BASE_URL, settings.VENDOR_USERNAME, settings.VENDOR_PASSWORD, **kwargs)

    def close(self) -> None:
        self._http.close()

    # ==========================================================
    # PUBLIC ACTIONS
    # ==========================================================

    def login(self) -> str:
        body = {
            "type": "USER",
            "from": "web",
            "username": self.username,
            "password": hashlib.md5(self.password.encode("utf-8")).hexdigest(),
            "browser": "tripsync",
        }
        with self._auth_lock:
            try:
                payload = self._post("login", body, authenticated=False)
            except RateLimitError:
                raise
            except VendorApiError as e:
                raise VendorAuthError(f"GPS51 login rejected: {e}", code=e.code, action="login") from e

            token = payload.get("token")
            if not token:
                raise VendorAuthError("GPS51 login returned no token", action="login")

            self.token = token
            self.server_id = payload.get("serverid")
            logger.info("[VENDOR] Logged in as %s", self.username)
            return token

    def last_positions(self, vendor_ids: List[str]) -> List[Dict[str, Any]]:
        """Latest record for each device (action=lastposition)."""
        payload = self._call("lastposition", {"deviceids": list(vendor_ids), "lastquerypositiontime": 0})
        return _records(payload)

    def query_track(self, vendor_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Track points between two UTC instants (action=querytracks)."""
        body = {
            "deviceid": vendor_id,
            "begintime": self._format_time(start),
            "endtime": self._format_time(end),
            "timezone": int(self.vendor_tz.utcoffset(None).total_seconds() // 3600),
            "coordsys": "wgs84",
        }
        return _records(self._call("querytracks", body))

    # ==========================================================
    # INTERNALS
    # ==========================================================

    def _format_time(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.vendor_tz).strftime(VENDOR_TIME_FORMAT)

    def _call(self, action: str, body: Dict[str, Any]) -> Dict[str, Any]:
        with self._auth_lock:
            if self.token is None:
                self.login()
            used_token = self.token
        try:
            return self._post(action, body)
        except VendorAuthError:
            logger.info("[VENDOR] Token rejected on %s, logging in again", action)
            with self._auth_lock:
                # another thread may already have refreshed it
                if self.token == used_token:
                    self.token = None
                    self.login()
            return self._post(action, body)

    def _throttle(self) -> None:
        with self._pace_lock:
            if self._last_call_at is not None:
                wait = self.min_interval_s - (self._clock() - self._last_call_at)
                if wait > 0:
                    self._sleep(wait)
            self._last_call_at = self._clock()

    def _post(self, action: str, body: Dict[str, Any], authenticated: bool = True) -> Dict[str, Any]:
        params = {"action": action}
        if authenticated:
            params["token"] = self.token or ""
            if self.server_id:
                params["serverid"] = self.server_id

        self._throttle()
        try:
            response = self._http.post(self.base_url, params=params, json=body)
        except httpx.TimeoutException as e:
            raise TransientUpstreamError(f"GPS51 {action} timed out", action=action) from e
        except httpx.TransportError as e:
            raise TransientUpstreamError(f"GPS51 {action} transport error: {e}", action=action) from e

        if response.status_code == 429:
            raise RateLimitError(f"GPS51 {action} HTTP 429", code=429, action=action)
        if response.status_code >= 500:
            raise TransientUpstreamError(
                f"GPS51 {action} HTTP {response.status_code}",
                status_code=response.status_code,
                action=action,
            )
        if response.status_code >= 400:
            raise VendorApiError(f"GPS51 {action} HTTP {response.status_code}", code=response.status_code, action=action)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"GPS51 {action} returned non-JSON body", action=action) from e
        if not isinstance(payload, dict):
            raise TransientUpstreamError(f"GPS51 {action} returned unexpected payload", action=action)

        status = payload.get("status")
        if status in (0, "0"):
            return payload

        code = _as_code(status)
        cause = payload.get("cause") or payload.get("message") or "unknown error"
        message = f"GPS51 {action} failed: {cause} (status: {status})"
        if code in self.rate_limit_codes:
            raise RateLimitError(message, code=code, action=action)
        if code in self.token_expired_codes:
            raise VendorAuthError(message, code=code, action=action)
        raise VendorApiError(message, code=code, action=action)


def _as_code(status: Any) -> Optional[int]:
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def _records(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("records"), list):
        return data["records"]
    records = payload.get("records")
    return records if isinstance(records, list) else []
