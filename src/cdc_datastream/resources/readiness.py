"""Readiness polling for resources that come up asynchronously."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from cdc_datastream.config.models import PrivateConnectionState, ResourceKind
from cdc_datastream.errors import InvalidStateError, ReadinessTimeoutError

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[Any]]


class ReadinessPoller:
    """Waits for private connections and connection profiles to become usable.

    *sleep* is injectable so tests can drive state transitions without
    wall-clock delay.
    """

    def __init__(
        self,
        interval: float = 30.0,
        profile_attempts: int = 5,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._interval = interval
        self._profile_attempts = profile_attempts
        self._sleep = sleep

    async def wait_for_private_connection(
        self,
        name: str,
        fetch_state: Callable[[], Awaitable[str]],
    ) -> None:
        """Poll until the connection is CREATED; unbounded while CREATING."""

        def _log_wait(retry_state: RetryCallState) -> None:
            logger.info(
                "readiness.private_connection_waiting",
                name=name,
                attempt=retry_state.attempt_number,
            )

        async def _fetch() -> str:
            return await fetch_state()

        retrying = AsyncRetrying(
            retry=retry_if_result(
                lambda state: state == PrivateConnectionState.CREATING
            ),
            wait=wait_fixed(self._interval),
            stop=stop_never,
            sleep=self._sleep,
            before_sleep=_log_wait,
            reraise=True,
        )
        state = await retrying(_fetch)
        if state != PrivateConnectionState.CREATED:
            raise InvalidStateError(
                ResourceKind.PRIVATE_CONNECTION,
                name,
                f"invalid state {state!r} (should be either CREATING or CREATED)",
            )
        logger.info("readiness.private_connection_ready", name=name)

    async def wait_for_profile(
        self,
        kind: ResourceKind,
        name: str,
        fetch_ready: Callable[[], Awaitable[bool | None]],
    ) -> bool:
        """Return whether the profile exists and is ready.

        *fetch_ready* returns ``None`` when the profile is not listed at all,
        ``False`` when it is listed without a display name yet and ``True``
        once it is usable.  Only the middle case is retried.
        """

        def _log_wait(retry_state: RetryCallState) -> None:
            logger.info(
                "readiness.profile_waiting",
                kind=str(kind),
                name=name,
                attempt=retry_state.attempt_number,
            )

        async def _fetch() -> bool | None:
            return await fetch_ready()

        retrying = AsyncRetrying(
            retry=retry_if_result(lambda ready: ready is False),
            wait=wait_fixed(self._interval),
            stop=stop_after_attempt(self._profile_attempts),
            sleep=self._sleep,
            before_sleep=_log_wait,
            reraise=True,
        )
        try:
            ready = await retrying(_fetch)
        except RetryError as exc:
            raise ReadinessTimeoutError(
                kind, name, f"not ready after {self._profile_attempts} attempt(s)"
            ) from exc
        return ready is True
