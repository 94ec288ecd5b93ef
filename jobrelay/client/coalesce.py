import asyncio
import json
from typing import Any, Awaitable, Callable, Dict

def make_key(name: str, *args) -> str:
    return f"{name}:{json.dumps(args, sort_keys=True, default=str)}"

class RequestCoalescer:
    """
    Shares one in-flight call between concurrent callers asking for the same
    key. The entry is dropped as soon as the call settles, so later callers
    always trigger a fresh call.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        future = self._in_flight.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._in_flight[key] = future
            future.add_done_callback(lambda _: self._in_flight.pop(key, None))
        # shield: one caller being cancelled must not cancel the shared call
        return await asyncio.shield(future)
