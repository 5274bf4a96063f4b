"""FIFO serialization of command messages (``--queque``).

Each message takes a token (account id plus message id, so two sessions
receiving the same group message never share one) and waits until every
message queued before it has released its own. Release happens in the
pipeline's bookkeeping step, so a failing plugin never blocks the queue.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict


class CommandQueue:
    def __init__(self) -> None:
        self._waiting: OrderedDict[str, asyncio.Future[None]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._waiting)

    def __contains__(self, token: object) -> bool:
        return token in self._waiting

    async def acquire(self, token: str) -> None:
        """Wait for ``token``'s turn. A token already in the queue is refused."""
        if token in self._waiting:
            raise ValueError(f"token already queued: {token}")
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiting[token] = fut
        if next(iter(self._waiting)) == token:
            fut.set_result(None)
        try:
            await fut
        except asyncio.CancelledError:
            self.release(token)
            raise

    def release(self, token: str) -> None:
        fut = self._waiting.pop(token, None)
        if fut is None:
            return
        if self._waiting:
            head = next(iter(self._waiting.values()))
            if not head.done():
                head.set_result(None)
