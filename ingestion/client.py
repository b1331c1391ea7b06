"""
Authenticated provider HTTP client with rate limiting and retry logic.

This module provides robust provider access with:
- Bearer authentication via an injected AuthManager
- Security token substitution into endpoint paths
- A shared token bucket rate limiter
- Exponential backoff retry logic for transient failures
- Circuit breaker pattern to prevent hammering a failing provider
- One transparent re-login after an HTTP 401
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import (
    NetworkError,
    RateLimitError,
    TransportError,
    UnauthorizedResourceError,
    ValidationError,
)
from ingestion.auth_manager import AuthManager, AuthSession
from ingestion.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SECURITY_TOKEN_PLACEHOLDER = "{security_token}"


class ProviderClient:
    """
    Send requests to the aviation data provider.

    Paths may contain `{security_token}`, which is replaced by the current
    session's security token; the bearer token is sent in the Authorization
    header of every request.

    Attributes:
        max_retries: Maximum number of attempts per request (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        circuit_breaker_threshold: Consecutive failures before the circuit opens
        circuit_breaker_timeout: Seconds before the circuit resets
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        auth_manager: AuthManager,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        circuit_breaker_threshold: int = 20,
        circuit_breaker_timeout: int = 60,
    ):
        self.http_client = http_client
        self.auth_manager = auth_manager
        self.rate_limiter = rate_limiter
        self.base_url = (base_url or settings.PROVIDER_BASE_URL).rstrip("/")
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = circuit_breaker_threshold
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = circuit_breaker_timeout

        self.requests_sent = 0

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, auth_manager: AuthManager) -> "ProviderClient":
        rate_limiter = RateLimiter(
            rate=settings.RATE_LIMIT_PER_SECOND,
            burst=settings.RATE_LIMIT_BURST,
            jitter=settings.RATE_LIMIT_JITTER_SECONDS,
        )
        return cls(http_client=http_client, auth_manager=auth_manager, rate_limiter=rate_limiter)

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.now(timezone.utc) >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset for provider")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.now(timezone.utc) + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for provider. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    @staticmethod
    def _redact(path: str) -> str:
        return path.replace(SECURITY_TOKEN_PLACEHOLDER, "***")

    async def request_json(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Send an authenticated request and decode its JSON body.

        Args:
            method: HTTP method
            path: Endpoint path, may contain `{security_token}`
            json: Request body
            allow_not_found: Return None on HTTP 404 instead of raising
            max_retries: Override the client's attempt count

        Returns:
            Decoded JSON, or None for 404 (when allowed) and empty bodies

        Raises:
            AuthError: Login failed
            UnauthorizedResourceError: 401 for this resource even after re-login
            TransportError: Non-2xx status, network failure or open circuit
            ValidationError: Body is not valid JSON
        """
        if self._is_circuit_open():
            raise TransportError(
                "Circuit breaker is open for provider",
                context={
                    "url": self._redact(path),
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        response = await self._send_with_retry(method, path, json, max_retries or self.max_retries)

        if response.status_code == 404:
            if allow_not_found:
                return None
            raise TransportError(
                f"Resource not found: {self._redact(path)}",
                context={"status_code": 404, "url": self._redact(path)}
            )

        if not response.content or not response.content.strip():
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(
                "Failed to parse JSON response",
                context={
                    "url": self._redact(path),
                    "response_body": response.text[:500]
                },
                original_exception=e
            )

    async def _send_once(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]],
    ) -> Tuple[AuthSession, httpx.Response]:
        session = await self.auth_manager.get_valid_session()
        url = f"{self.base_url}{path.replace(SECURITY_TOKEN_PLACEHOLDER, session.security_token)}"
        headers = {
            "Authorization": f"Bearer {session.bearer_token}",
            "Accept": "application/json",
        }
        if json is not None:
            headers["Content-Type"] = "application/json"

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        self.requests_sent += 1
        response = await self.http_client.request(
            method,
            url,
            json=json,
            headers=headers,
            timeout=self.timeout,
        )
        return session, response

    async def _send_with_retry(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]],
        max_retries: int,
    ) -> httpx.Response:
        """
        Send with retry logic and exponential backoff.

        Raises:
            AuthError: Session could not be obtained
            UnauthorizedResourceError: 401 after re-login
            TransportError: Non-retryable status, or retryable failures after max retries
        """
        url = self._redact(path)
        reauthenticated = False
        attempt = 0

        while True:
            try:
                logger.debug(f"Request attempt {attempt + 1}/{max_retries} to {url}")
                session, response = await self._send_once(method, path, json)

                if response.status_code == 401:
                    if not reauthenticated:
                        # Session revoked or expired early: log in again once
                        logger.warning(f"Provider returned 401 for {url}; re-authenticating")
                        # Only the rejected session is dropped; a newer one stays cached
                        self.auth_manager.invalidate(session)
                        reauthenticated = True
                        continue
                    self._record_failure()
                    raise UnauthorizedResourceError(
                        f"Provider rejected a fresh session for {url}",
                        context={"status_code": 401, "url": url}
                    )

                if response.status_code == 429:
                    retry_after = self._retry_after(response, attempt)
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")

                    if attempt < max_retries - 1:
                        attempt += 1
                        await asyncio.sleep(retry_after)
                        continue
                    self._record_failure()
                    raise RateLimitError(
                        f"Rate limit exceeded for {url}",
                        context={
                            "status_code": 429,
                            "url": url,
                            "retry_count": attempt + 1
                        },
                        retry_after=retry_after
                    )

                if response.status_code >= 500:
                    if attempt < max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{max_retries})"
                        )
                        attempt += 1
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Server error after {max_retries} attempts",
                        context={
                            "status_code": response.status_code,
                            "url": url,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )

                if response.status_code == 404:
                    return response

                if response.status_code >= 400:
                    self._record_failure()
                    raise TransportError(
                        f"Provider returned HTTP {response.status_code} for {url}",
                        context={
                            "status_code": response.status_code,
                            "url": url,
                            "response_body": response.text[:500]
                        }
                    )

                self._record_success()
                return response

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                kind = "timeout" if isinstance(e, httpx.TimeoutException) else "network error"
                if attempt < max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request {kind}. Retrying in {delay} seconds")
                    attempt += 1
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request {kind} after {max_retries} attempts",
                    context={
                        "url": url,
                        "timeout": self.timeout,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

            except httpx.HTTPError as e:
                self._record_failure()
                raise TransportError(
                    f"Unexpected HTTP error for {url}",
                    context={"url": url, "retry_count": attempt + 1},
                    original_exception=e
                )

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return float(header)
        except (TypeError, ValueError):
            return self.retry_delay * (2 ** attempt)
