"""Cancellable push-challenge poller.

Polls a push challenge at a fixed interval until it reaches a terminal
result or the hard ceiling expires. At most one poll loop runs per poller.
Starting a new poll or stopping the poller supersedes the previous loop:
its task is cancelled and any result it produces afterwards is discarded.
"""

from __future__ import annotations

__all__ = [
    "PushPoller",
]

import asyncio
import time
from typing import Any, Awaitable, Callable

from state_portal.constants import PUSH_POLL_INTERVAL_SECONDS, PUSH_TIMEOUT_SECONDS
from state_portal.exceptions import ChallengeTimeoutError, PortalError, UpstreamError
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Challenge
from state_portal.telemetry.system_logger import get_system_logger

_system_logger = get_system_logger()

ResultCallback = Callable[[Challenge], Awaitable[Any]]
ErrorCallback = Callable[[PortalError], Awaitable[None]]


class PushPoller:
    """Background poll loop for one push challenge at a time.

    Usage:
        poller = PushPoller(idp)
        poller.start(challenge, on_result=handle_result, on_error=handle_error)
        ...
        await poller.stop()
    """

    def __init__(
        self,
        idp: IdentityProviderClient,
        *,
        interval_seconds: float = PUSH_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = PUSH_TIMEOUT_SECONDS,
        request_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            idp: Identity provider client used to poll.
            interval_seconds: Delay between polls (default 3s).
            timeout_seconds: Hard ceiling from start() to giving up (default 60s).
            request_timeout_seconds: Per-poll request timeout.
        """
        self._idp = idp
        self.interval = interval_seconds
        self.timeout = timeout_seconds
        self._request_timeout = request_timeout_seconds
        self._task: asyncio.Task[None] | None = None
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int:
        """Incremented on every start() and stop(); identifies the live loop."""
        return self._generation

    def start(
        self,
        challenge: Challenge,
        *,
        on_result: ResultCallback,
        on_error: ErrorCallback,
    ) -> int:
        """Start polling `challenge`, superseding any loop in flight.

        Must be called from a running event loop. Callers that need the old
        loop fully stopped first should await stop() before calling start().

        Returns:
            The generation of the new loop.
        """
        self._cancel_current()
        self._generation += 1
        generation = self._generation
        self._task = asyncio.create_task(
            self._poll_loop(challenge, generation, on_result, on_error),
            name=f"push_poll_{challenge.factor_id}_{generation}",
        )
        return generation

    async def stop(self) -> None:
        """Cancel the loop in flight and wait for it to finish."""
        self._generation += 1
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _cancel_current(self) -> None:
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _poll_loop(
        self,
        challenge: Challenge,
        generation: int,
        on_result: ResultCallback,
        on_error: ErrorCallback,
    ) -> None:
        deadline = time.monotonic() + self.timeout
        try:
            while True:
                await asyncio.sleep(self.interval)
                if not self._is_current(generation):
                    return

                if time.monotonic() >= deadline:
                    self._finish(generation)
                    await on_error(ChallengeTimeoutError("Push notification timed out. Please try again."))
                    return

                polled = await self._idp.poll_challenge(challenge, timeout=self._request_timeout)
                if not self._is_current(generation):
                    _system_logger.debug(
                        {
                            "event": "push_poll_superseded",
                            "message": "Discarded result from a superseded push poll",
                            "factor_id": challenge.factor_id,
                        }
                    )
                    return

                if polled.result.is_terminal:
                    self._finish(generation)
                    await on_result(polled)
                    return
                challenge = polled

        except asyncio.CancelledError:
            raise
        except PortalError as e:
            if self._is_current(generation):
                self._finish(generation)
                await on_error(e)
        except Exception as e:
            # Unexpected failures also end the loop through on_error
            _system_logger.error(
                {
                    "event": "push_poll_crashed",
                    "message": f"Push poll failed unexpectedly: {type(e).__name__}",
                    "factor_id": challenge.factor_id,
                }
            )
            if self._is_current(generation):
                self._finish(generation)
                await on_error(UpstreamError("Could not check the push notification status. Please try again."))

    def _finish(self, generation: int) -> None:
        # Detach before invoking callbacks so they may start a new poll
        if self._is_current(generation):
            self._task = None
