# empath/services/timer.py asyncio timers for debouncing, buffering and cutoffs
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from empath.utils.exception import print_error

logger = logging.getLogger(__name__)


class ResettableTimer:
    """
    Fires `callback` once, `delay_s` seconds after it was (re)started.

    - restart(): cancel any pending fire and start counting again (debounce)
    - start_if_idle(): start only when nothing is pending (fixed window)
    - cancel(): drop the pending fire
    The callback may be a plain function or a coroutine function.
    """

    def __init__(self, delay_s: float, callback: Callable[..., Any], name: str = "timer"):
        self.delay_s = delay_s
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def restart(self, *args: Any) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run(args), name=self.name)

    def start_if_idle(self, *args: Any) -> bool:
        if self.pending:
            return False
        self._task = asyncio.create_task(self._run(args), name=self.name)
        return True

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def _run(self, args) -> None:
        await asyncio.sleep(self.delay_s)
        # detach before firing so the callback sees the timer as idle
        self._task = None
        try:
            result = self.callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            print_error(self.callback, f"{self.name} callback failed: {e}")
