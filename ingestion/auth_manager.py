"""
Provider credential and token lifecycle management.

The provider login returns two tokens: a short-lived bearer token sent in the
Authorization header and a security token embedded in endpoint paths. The
AuthManager caches the pair, validates its shape, and single-flights refresh
so that concurrent callers observing an expired session share one login.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import AuthError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/Admin/APILogin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProviderCredentials:
    email: str
    password: str = field(repr=False)

    @classmethod
    def from_settings(cls) -> "ProviderCredentials":
        if not settings.PROVIDER_EMAIL or not settings.PROVIDER_PASSWORD:
            raise AuthError(
                "Provider credentials are not configured",
                context={"missing": [
                    name for name in ("PROVIDER_EMAIL", "PROVIDER_PASSWORD")
                    if not getattr(settings, name)
                ]}
            )
        return cls(email=settings.PROVIDER_EMAIL, password=settings.PROVIDER_PASSWORD)


@dataclass(frozen=True)
class AuthSession:
    bearer_token: str = field(repr=False)
    security_token: str = field(repr=False)
    issued_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime, safety_margin: timedelta = timedelta(0)) -> bool:
        return now < self.expires_at - safety_margin


class AuthManager:
    """
    Acquire, cache and refresh provider sessions.

    Features:
    - Token shape validation (minimum bearer / security token lengths)
    - Lazy refresh once `now >= expires_at - safety_margin`
    - Single-flight refresh: one login no matter how many concurrent callers
    - Session invalidation after a provider 401

    Attributes:
        refresh_count: Successful logins performed
        failure_count: Failed login attempts
        last_success_at: Time of the last successful login
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: ProviderCredentials,
        base_url: Optional[str] = None,
        safety_margin_seconds: Optional[int] = None,
        default_ttl_seconds: Optional[int] = None,
        min_bearer_length: Optional[int] = None,
        min_security_length: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.http_client = http_client
        self.credentials = credentials
        self.base_url = (base_url or settings.PROVIDER_BASE_URL).rstrip("/")
        self.safety_margin = timedelta(
            seconds=settings.TOKEN_SAFETY_MARGIN_SECONDS if safety_margin_seconds is None else safety_margin_seconds
        )
        self.default_ttl_seconds = default_ttl_seconds or settings.TOKEN_TTL_SECONDS
        self.min_bearer_length = min_bearer_length or settings.MIN_BEARER_TOKEN_LENGTH
        self.min_security_length = min_security_length or settings.MIN_SECURITY_TOKEN_LENGTH
        self._clock = clock

        self._session: Optional[AuthSession] = None
        self._refresh_task: Optional[asyncio.Task] = None

        self.refresh_count = 0
        self.failure_count = 0
        self.last_success_at: Optional[datetime] = None

    @property
    def login_url(self) -> str:
        return f"{self.base_url}{LOGIN_PATH}"

    async def acquire(self, credentials: Optional[ProviderCredentials] = None) -> AuthSession:
        """
        Log in and return a fresh session (does not touch the cache).

        Raises:
            AuthError: Provider unreachable, non-2xx status, unparseable body
                or tokens that fail shape validation
        """
        credentials = credentials or self.credentials

        try:
            response = await self.http_client.post(
                self.login_url,
                json={"emailaddress": credentials.email, "password": credentials.password},
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise AuthError(
                "Provider login request failed",
                context={"login_url": self.login_url},
                original_exception=e
            )

        if response.status_code < 200 or response.status_code >= 300:
            raise AuthError(
                f"Provider login returned HTTP {response.status_code}",
                context={
                    "login_url": self.login_url,
                    "status_code": response.status_code,
                    "response_body": response.text[:200],
                }
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthError(
                "Provider login returned a non-JSON body",
                context={"login_url": self.login_url, "response_body": response.text[:200]},
                original_exception=e
            )

        return self._session_from_payload(payload)

    def _session_from_payload(self, payload: Any) -> AuthSession:
        # Some deployments wrap the login object in a list
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not isinstance(payload, dict):
            raise AuthError(
                "Provider login response is not an object",
                context={"login_url": self.login_url, "reason": "shape"}
            )

        bearer = payload.get("bearerToken")
        security = payload.get("apiToken", payload.get("securityToken"))

        if not isinstance(bearer, str) or len(bearer) < self.min_bearer_length:
            raise AuthError(
                "Bearer token missing or too short",
                context={
                    "login_url": self.login_url,
                    "reason": "bearer_token_length",
                    "length": len(bearer) if isinstance(bearer, str) else None,
                    "minimum": self.min_bearer_length,
                }
            )
        if not isinstance(security, str) or len(security) < self.min_security_length:
            raise AuthError(
                "Security token missing or too short",
                context={
                    "login_url": self.login_url,
                    "reason": "security_token_length",
                    "length": len(security) if isinstance(security, str) else None,
                    "minimum": self.min_security_length,
                }
            )

        expires_in = payload.get("expiresIn")
        try:
            expires_in = int(expires_in) if expires_in else self.default_ttl_seconds
        except (TypeError, ValueError):
            expires_in = self.default_ttl_seconds

        issued_at = self._clock()
        return AuthSession(
            bearer_token=bearer,
            security_token=security,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )

    async def get_valid_session(self) -> AuthSession:
        """
        Return the cached session, refreshing it first if expired or near expiry.

        Concurrent callers that observe an expired session await the same
        in-flight refresh task.
        """
        session = self._session
        if session is not None and session.is_valid(self._clock(), self.safety_margin):
            return session

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh())

        task = self._refresh_task
        try:
            # shield: a cancelled caller must not cancel the shared login
            return await asyncio.shield(task)
        finally:
            if task.done() and self._refresh_task is task:
                self._refresh_task = None

    async def get_valid_token(self) -> str:
        """Return a valid bearer token"""
        session = await self.get_valid_session()
        return session.bearer_token

    async def _refresh(self) -> AuthSession:
        logger.info("Refreshing provider session")
        try:
            session = await self.acquire()
        except AuthError as e:
            self.failure_count += 1
            self._session = None
            logger.error(
                f"Provider login failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            raise

        self._session = session
        self.refresh_count += 1
        self.last_success_at = session.issued_at
        logger.info(f"Provider session valid until {session.expires_at.isoformat()}")
        return session

    def invalidate(self, session: Optional[AuthSession] = None) -> None:
        """
        Drop the cached session; the next caller logs in again.

        When `session` is given (the session a rejected request was sent
        with), the cache is only cleared if it still holds that session.
        Requests that were in flight with a revoked token therefore cause a
        single re-login, not one per 401.
        """
        if session is not None and self._session is not session:
            logger.debug("Rejected session already replaced; keeping cached session")
            return
        if self._session is not None:
            logger.info("Invalidating provider session")
        self._session = None

    def metrics(self) -> Dict[str, Any]:
        session = self._session
        return {
            "has_session": session is not None,
            "expires_at": session.expires_at.isoformat() if session else None,
            "refresh_count": self.refresh_count,
            "failure_count": self.failure_count,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
        }
