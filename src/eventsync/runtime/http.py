"""Requests-based HTTP client shared by all source adapters.

Features:
- session reuse + connection pooling
- retry with exponential backoff on network errors and 408/429/5xx
- per-host politeness delay with jitter
- bounded per-request timeout
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from eventsync.runtime.resilience import HostRateLimiter, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Macintosh) AppleWebKit/537.36 Safari/537.36"


class FetchError(Exception):
    """Raised when a request keeps failing after all retries."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


@dataclass
class HttpClientOptions:
    """Configuration options for the HTTP client."""

    timeout_s: float = 20.0
    verify_ssl: bool = True

    # retry
    max_retries: int = 4
    backoff_mode: str = "exp"
    base_delay_s: float = 0.5
    retry_on_status: tuple[int, ...] = (408, 429, 500, 502, 503, 504)

    # politeness
    min_delay_s: float = 0.4
    jitter_s: float = 0.35

    user_agent: str = DEFAULT_USER_AGENT

    # pool
    pool_connections: int = 10
    pool_maxsize: int = 20


class HttpClient:
    """HTTP client using the requests library."""

    def __init__(self, *, options: HttpClientOptions | None = None) -> None:
        self.options = options or HttpClientOptions()
        self._session = requests.Session()
        self._session.headers["User-Agent"] = self.options.user_agent

        adapter = requests.adapters.HTTPAdapter(
            pool_connections=self.options.pool_connections,
            pool_maxsize=self.options.pool_maxsize,
        )
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

        self._limiter = HostRateLimiter(
            min_delay_s=self.options.min_delay_s,
            jitter_s=self.options.jitter_s,
        )
        self._retry_policy = RetryPolicy(
            max_retries=self.options.max_retries,
            backoff_mode=self.options.backoff_mode,
            base_delay_s=self.options.base_delay_s,
            retry_on_status=self.options.retry_on_status,
        )

    @classmethod
    def from_settings(cls, settings) -> "HttpClient":
        return cls(
            options=HttpClientOptions(
                timeout_s=settings.REQUEST_TIMEOUT_S,
                max_retries=settings.MAX_RETRIES,
                min_delay_s=settings.POLITE_DELAY_S,
                jitter_s=settings.POLITE_JITTER_S,
            )
        )

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get(
        self,
        url: str,
        *,
        timeout_s: float | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        GET `url`, retrying transient failures.

        Raises:
            FetchError: when the request fails permanently or retries are exhausted.
        """
        timeout = float(timeout_s or self.options.timeout_s)
        policy = self._retry_policy
        last_error = "exhausted retries"
        last_status: int | None = None

        for attempt in range(0, policy.max_retries + 1):
            self._limiter.wait(url)
            try:
                resp = self._session.get(
                    url,
                    timeout=timeout,
                    verify=self.options.verify_ssl,
                    headers=headers,
                    params=params,
                    allow_redirects=True,
                )
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = None
            else:
                if resp.ok:
                    return resp
                last_status = resp.status_code
                last_error = f"HTTP {resp.status_code}"
                if not policy.should_retry_status(resp.status_code):
                    raise FetchError(url, last_error, status_code=last_status)

            if attempt < policy.max_retries:
                delay = policy.compute_backoff_s(attempt + 1)
                logger.warning(
                    f"Request to {url} failed ({last_error}); "
                    f"retry {attempt + 1}/{policy.max_retries} in {delay:.2f}s"
                )
                if delay > 0:
                    time.sleep(delay)

        raise FetchError(url, last_error, status_code=last_status)

    def get_text(self, url: str, **kwargs) -> str:
        resp = self.get(url, **kwargs)
        resp.encoding = resp.encoding or "utf-8"
        return resp.text or ""

    def get_json(self, url: str, **kwargs) -> Any:
        headers = {"Accept": "application/json", **(kwargs.pop("headers", None) or {})}
        resp = self.get(url, headers=headers, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(url, f"invalid JSON: {e}", status_code=resp.status_code) from e
