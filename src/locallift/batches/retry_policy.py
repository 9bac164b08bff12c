import asyncio
from collections.abc import Container
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from locallift.batches.batch_models import ErrorClass
from locallift.batches.errors import (
    CredentialError,
    ExternalApiError,
    ExternalConnectionError,
    ExternalTimeoutError,
    InvalidItemError,
    RetryExhaustedError,
)
from locallift.main.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], ErrorClass]

DEFAULT_TRANSIENT_STATUS_CODES = frozenset({500, 502, 503, 504})


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    initial_backoff_seconds: float
    multiplier: float
    max_backoff_seconds: float
    jitter_seconds: float = 0.0
    rate_limit_cooldown_seconds: float = 0.0
    attempt_timeout_seconds: float | None = None


def classify_external_error(
    exc: BaseException,
    transient_status_codes: Container[int] = DEFAULT_TRANSIENT_STATUS_CODES,
) -> ErrorClass:
    if isinstance(exc, RetryExhaustedError):
        return classify_external_error(exc.last_error, transient_status_codes)
    if isinstance(exc, CredentialError):
        return ErrorClass.CREDENTIAL
    if isinstance(exc, InvalidItemError):
        return ErrorClass.PERMANENT
    if isinstance(exc, ExternalApiError):
        if exc.status_code == 429:
            return ErrorClass.RATE_LIMITED
        if exc.status_code is not None and exc.status_code in transient_status_codes:
            return ErrorClass.TRANSIENT
        return ErrorClass.PERMANENT
    if isinstance(exc, (ExternalTimeoutError, ExternalConnectionError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.UNEXPECTED


class wait_rate_limit_cooldown(wait_base):
    """Adds a fixed cooldown when the failed attempt was rate limited."""

    def __init__(self, cooldown: float, classify: Classifier):
        self.cooldown = cooldown
        self.classify = classify

    def __call__(self, retry_state: RetryCallState) -> float:
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return 0
        if self.classify(retry_state.outcome.exception()) is ErrorClass.RATE_LIMITED:
            return self.cooldown
        return 0


class RetryPolicy:
    """Runs an external call, retrying transient and rate-limited failures.

    Backoff for attempt ``n`` is ``min(initial * multiplier ** (n - 1), max)``
    plus random jitter, with the rate-limit cooldown added on top when the
    failure was a 429. Permanent and credential failures propagate on the
    first attempt. Exhausting ``max_attempts`` raises ``RetryExhaustedError``
    carrying the last underlying error.
    """

    def __init__(
        self,
        config: RetryConfig,
        classify: Classifier = classify_external_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.classify = classify
        self.sleep = sleep

    def _retrying(self, context: str) -> AsyncRetrying:
        config = self.config
        wait = wait_exponential(
            multiplier=config.initial_backoff_seconds,
            exp_base=config.multiplier,
            max=config.max_backoff_seconds,
        ) + wait_rate_limit_cooldown(config.rate_limit_cooldown_seconds, self.classify)
        if config.jitter_seconds > 0:
            wait = wait + wait_random(0, config.jitter_seconds)

        def log_before_sleep(retry_state: RetryCallState):
            exc = retry_state.outcome.exception()
            logger.warning(
                f"{context} attempt {retry_state.attempt_number} failed, retrying",
                extra={
                    "attempt": retry_state.attempt_number,
                    "max_attempts": config.max_attempts,
                    "error_code": self.classify(exc).value,
                    "error": str(exc),
                    "delay_seconds": round(retry_state.next_action.sleep, 3),
                },
            )

        return AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait,
            retry=retry_if_exception(lambda exc: self.classify(exc).is_retryable),
            sleep=self.sleep,
            before_sleep=log_before_sleep,
            reraise=False,
        )

    async def _attempt(self, fn: Callable[[], Awaitable[T]]) -> T:
        if self.config.attempt_timeout_seconds is None:
            return await fn()
        try:
            async with asyncio.timeout(self.config.attempt_timeout_seconds):
                return await fn()
        except TimeoutError as exc:
            raise ExternalTimeoutError(
                f"No response within {self.config.attempt_timeout_seconds}s"
            ) from exc

    async def execute(self, fn: Callable[[], Awaitable[T]], context: str = "call") -> T:
        try:
            return await self._retrying(context)(self._attempt, fn)
        except RetryError as exc:
            last_attempt = exc.last_attempt
            raise RetryExhaustedError(
                context=context,
                attempts=last_attempt.attempt_number,
                last_error=last_attempt.exception(),
            ) from last_attempt.exception()

