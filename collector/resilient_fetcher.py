"""
Resilient JSON Fetcher

GET with bounded retries and exponential backoff. Built to survive a
backend that sleeps when idle and needs several seconds (and several
attempts) to answer the first request after a cold start.

Each logical request is an explicit state machine:

    ATTEMPTING -> SUCCESS
    ATTEMPTING -> BACKOFF -> ATTEMPTING ...
    ATTEMPTING -> EXHAUSTED   (attempt budget spent)

Attempts are strictly sequential. Cancelling the awaiting task stops the
loop where it is, including in the middle of a backoff wait.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

import httpx

from config import DEFAULT_BACKOFF_BASE_S, DEFAULT_MAX_ATTEMPTS, DEFAULT_REQUEST_TIMEOUT_S

logger = logging.getLogger("resilient_fetcher")

NO_CACHE_HEADERS = {
    "cache-control": "no-cache",
    "pragma": "no-cache",
}
JSON_ACCEPT = "application/json, text/plain;q=0.9, */*;q=0.8"

# Gateway statuses a suspended host answers with while it is waking up.
COLD_START_STATUSES: FrozenSet[int] = frozenset({502, 503, 504})

SleepFn = Callable[[float], Awaitable[Any]]


class FetchState(Enum):
    ATTEMPTING = "ATTEMPTING"
    BACKOFF = "BACKOFF"
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"


class TransientNetworkError(Exception):
    """One failed attempt: transport error, rejected status or unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamExhausted(Exception):
    """Every attempt of a request failed."""

    def __init__(
        self,
        url: str,
        attempts: int,
        last_error: Optional[BaseException],
        last_response: Optional[httpx.Response] = None,
    ):
        super().__init__(f"{url} failed after {attempts} attempt(s): {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.last_response = last_response

    @property
    def status_code(self) -> Optional[int]:
        return self.last_response.status_code if self.last_response is not None else None


NetworkExhausted = UpstreamExhausted


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and pacing.

    retry_statuses=None rejects (and retries) any status outside 2xx.
    With an explicit set, only those statuses are retried and every other
    response is accepted as final.
    """
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_s: float = DEFAULT_BACKOFF_BASE_S
    timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    retry_statuses: Optional[FrozenSet[int]] = None

    def accepts(self, status_code: int) -> bool:
        if self.retry_statuses is None:
            return 200 <= status_code < 300
        return status_code not in self.retry_statuses

    def delay_for(self, attempt: int) -> float:
        """Wait after the failed attempt with 0-based index `attempt`."""
        return self.base_delay_s * (2 ** attempt)


def proxy_policy(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_s: float = DEFAULT_BACKOFF_BASE_S,
    timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
) -> RetryPolicy:
    """Policy for relaying: retry transport failures and cold-start gateway codes only."""
    return RetryPolicy(
        max_attempts=max_attempts,
        base_delay_s=base_delay_s,
        timeout_s=timeout_s,
        retry_statuses=COLD_START_STATUSES,
    )


class RetryingRequest:
    """A single logical GET driven through the retry state machine."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        policy: RetryPolicy,
        *,
        headers: Optional[Dict[str, str]] = None,
        parse: Optional[Callable[[httpx.Response], Any]] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        if policy.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.client = client
        self.url = url
        self.policy = policy
        self.headers = {"accept": JSON_ACCEPT, **(headers or {}), **NO_CACHE_HEADERS}
        self.parse = parse
        self.sleep = sleep

        self.state = FetchState.ATTEMPTING
        self.attempts = 0
        self.transitions: List[Tuple[FetchState, FetchState]] = []
        self.delays: List[float] = []
        self.last_error: Optional[BaseException] = None
        self.last_response: Optional[httpx.Response] = None
        self.result: Any = None

    def _move(self, new_state: FetchState) -> None:
        self.transitions.append((self.state, new_state))
        self.state = new_state

    async def _attempt(self) -> Any:
        try:
            response = await self.client.get(
                self.url,
                headers=self.headers,
                timeout=self.policy.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"timeout after {self.policy.timeout_s}s: {e!r}") from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"request error: {e!r}") from e

        self.last_response = response
        if not self.policy.accepts(response.status_code):
            raise TransientNetworkError(f"HTTP {response.status_code}", response.status_code)

        if self.parse is None:
            return response
        try:
            return self.parse(response)
        except ValueError as e:
            raise TransientNetworkError(f"unreadable body: {e}", response.status_code) from e

    async def run(self) -> Any:
        """Drive the machine to SUCCESS (returning the result) or EXHAUSTED (raising)."""
        if self.state is not FetchState.ATTEMPTING or self.attempts:
            raise RuntimeError("RetryingRequest.run() may only be called once")

        while True:
            self.attempts += 1
            self.last_response = None
            try:
                self.result = await self._attempt()
            except TransientNetworkError as e:
                self.last_error = e
                if self.attempts >= self.policy.max_attempts:
                    self._move(FetchState.EXHAUSTED)
                    logger.error(f"Giving up on {self.url} after {self.attempts} attempt(s): {e}")
                    raise UpstreamExhausted(self.url, self.attempts, e, self.last_response) from e

                delay = self.policy.delay_for(self.attempts - 1)
                self.delays.append(delay)
                self._move(FetchState.BACKOFF)
                logger.warning(
                    f"Attempt {self.attempts}/{self.policy.max_attempts} for {self.url} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
                self._move(FetchState.ATTEMPTING)
                continue

            self._move(FetchState.SUCCESS)
            return self.result


def _parse_json(response: httpx.Response) -> Any:
    return response.json()


async def fetch_response(
    url: str,
    *,
    policy: Optional[RetryPolicy] = None,
    headers: Optional[Dict[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: SleepFn = asyncio.sleep,
) -> httpx.Response:
    """Fetch with retries and return the final accepted response."""
    policy = policy or RetryPolicy()
    if client is not None:
        return await RetryingRequest(client, url, policy, headers=headers, sleep=sleep).run()
    async with httpx.AsyncClient(timeout=policy.timeout_s, follow_redirects=True) as own_client:
        return await RetryingRequest(own_client, url, policy, headers=headers, sleep=sleep).run()


async def fetch_json(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    max_attempts: Optional[int] = None,
    policy: Optional[RetryPolicy] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: SleepFn = asyncio.sleep,
) -> Any:
    """
    GET `url` and decode its JSON body, retrying with exponential backoff.

    Args:
        url: Absolute URL, or a path relative to `client.base_url`.
        headers: Extra request headers; cache-busting headers always apply.
        max_attempts: Overrides the policy's attempt budget.
        policy: Retry pacing; defaults to 5 attempts, 0.6s base, 8s timeout.
        client: Shared AsyncClient; a short-lived one is created when omitted.
        sleep: Backoff wait, injectable for tests.

    Raises:
        UpstreamExhausted: every attempt failed.
    """
    policy = policy or RetryPolicy()
    if max_attempts is not None:
        policy = replace(policy, max_attempts=max_attempts)

    if client is not None:
        request = RetryingRequest(client, url, policy, headers=headers, parse=_parse_json, sleep=sleep)
        return await request.run()
    async with httpx.AsyncClient(timeout=policy.timeout_s, follow_redirects=True) as own_client:
        request = RetryingRequest(own_client, url, policy, headers=headers, parse=_parse_json, sleep=sleep)
        return await request.run()
