"""
Cooperative cancellation shared by every stage of one analysis run.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import AnalysisCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    A one-shot cancellation signal.

    Network-bound awaitables are wrapped with `guard()` so they are abandoned
    as soon as `cancel()` is called.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Analysis cancelled"):
        if not self._event.is_set():
            logger.info(f"Cancellation requested: {reason}")
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise AnalysisCancelledError(self.reason or "Analysis cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token is cancelled first.

        Raises:
            AnalysisCancelledError: If cancellation wins the race
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled call finished with {type(e).__name__}: {e}")
        raise AnalysisCancelledError(self.reason or "Analysis cancelled")


async def guarded(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await through `token` when one is given."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
