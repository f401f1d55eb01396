"""GitHub Device Authorization Flow (RFC 8628) polling."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import DeviceFlowCancelled, DeviceFlowDenied, DeviceFlowExpired

logger = logging.getLogger(__name__)

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# GitHub asks clients to add 5 seconds to the interval on every slow_down
SLOW_DOWN_INCREMENT_SECONDS = 5

TokenRequester = Callable[[], Awaitable[Dict[str, Any]]]


class DevicePollHandle:
    """
    Handle on a running device-flow poll.

    Awaiting the handle yields the poll result. ``cancel()`` stops polling;
    awaiters then receive DeviceFlowCancelled. Cancelling a task that merely
    awaits the handle does not stop the poll itself.
    """

    def __init__(self, task: "asyncio.Future[Any]"):
        self._task = task

    def cancel(self) -> bool:
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    def exception(self) -> Optional[BaseException]:
        """The failure of a finished, non-cancelled poll (None while running)."""
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    def add_done_callback(self, callback: Callable[["DevicePollHandle"], Any]) -> None:
        self._task.add_done_callback(lambda _: callback(self))

    async def result(self) -> Any:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                raise DeviceFlowCancelled("Device authorization was cancelled") from None
            raise

    def __await__(self):
        return self.result().__await__()


class DeviceFlowSession:
    """
    One device authorization attempt and its polling state machine.

    The session is not persisted: it lives only as long as the object. The
    expiry deadline is computed once, on the monotonic clock, when the code
    is issued; ``expires_at`` is wall-clock time for display only.
    """

    def __init__(
        self,
        *,
        device_code: str,
        user_code: str,
        verification_uri: str,
        expires_in: int,
        interval: float,
        request_token: TokenRequester,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.device_code = device_code
        self.user_code = user_code
        self.verification_uri = verification_uri
        self.expires_in = expires_in
        self.interval = interval
        self.expires_at = wall_clock() + expires_in
        self.status = "pending"
        self.requests_made = 0

        self._request_token = request_token
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._deadline = clock() + expires_in

    def seconds_remaining(self) -> int:
        """Seconds until the user code expires, for display."""
        return max(0, int(self.expires_at - self._wall_clock()))

    async def poll(self) -> str:
        """
        Poll the token endpoint until the user authorizes or the code expires.

        Returns:
            The access token

        Raises:
            DeviceFlowExpired: The deadline passed or GitHub reported expired_token
            DeviceFlowDenied: The user declined the request
        """
        deadline = self._deadline
        interval = float(self.interval)

        while True:
            if self._clock() >= deadline:
                self.status = "expired"
                raise DeviceFlowExpired("The device code expired before it was authorized")

            self.requests_made += 1
            data = await self._request_token()

            token = data.get("access_token")
            if token:
                self.status = "authorized"
                logger.info("Device flow authorized")
                return token

            error = data.get("error")
            if error == "authorization_pending":
                wait = interval
            elif error == "slow_down":
                advertised = data.get("interval")
                interval = interval + SLOW_DOWN_INCREMENT_SECONDS
                if advertised:
                    interval = max(interval, float(advertised))
                self.interval = interval
                logger.info(f"Device flow asked to slow down, interval now {interval}s")
                wait = interval
            elif error == "expired_token":
                self.status = "expired"
                raise DeviceFlowExpired(
                    "The device code expired before it was authorized",
                    detail=data.get("error_description"),
                )
            elif error == "access_denied":
                self.status = "denied"
                raise DeviceFlowDenied(
                    "Authorization was denied on GitHub",
                    detail=data.get("error_description"),
                )
            else:
                logger.warning(f"Unexpected device flow poll response: {error or data}")
                wait = interval

            remaining = deadline - self._clock()
            if remaining <= 0:
                self.status = "expired"
                raise DeviceFlowExpired("The device code expired before it was authorized")
            await self._sleep(min(wait, remaining))

    def start_polling(self) -> DevicePollHandle:
        """Run ``poll()`` as a background task and return a cancellable handle."""
        return DevicePollHandle(asyncio.ensure_future(self.poll()))

    def describe(self) -> Dict[str, Any]:
        """Public view of the session (the device code itself is omitted)."""
        return {
            "user_code": self.user_code,
            "verification_uri": self.verification_uri,
            "expires_in": self.expires_in,
            "seconds_remaining": self.seconds_remaining(),
            "interval": self.interval,
            "status": self.status,
        }
