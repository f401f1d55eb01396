"""At-most-one concurrent execution per operation name."""

import asyncio
from typing import Any, Awaitable, Callable, Dict


class SingleFlight:
    """
    Collapses concurrent calls for the same key onto one running task.

    Callers arriving while a task for ``key`` is in flight await that task
    instead of starting another. Once it finishes the key is free again.
    """

    def __init__(self):
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    def _release(self, key: str, task: "asyncio.Future[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
