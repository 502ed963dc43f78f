import logging
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


class _Timer:
    __slots__ = ('key', 'epoch', 'handle')

    def __init__(self, key: str, epoch: int) -> None:
        self.key = key
        self.epoch = epoch
        self.handle = None


class TimerRegistry:
    """Cancellable delayed callbacks keyed by name and stamped with an epoch.

    - ``call_later(delay, fn)`` must return a handle with ``cancel()``; the
      asyncio loop's ``call_later`` is the production backend
    - Scheduling a key that is already pending replaces the pending timer
    - ``bump_epoch()`` cancels everything; a callback stamped with an older
      epoch that still manages to fire is dropped
    """

    def __init__(self, call_later: Callable[..., Any]) -> None:
        self._call_later = call_later
        self._pending: Dict[str, _Timer] = {}
        self.epoch = 0

    def schedule(self, key: str, delay: float, callback: Callable[..., None], *args: Any) -> None:
        self.cancel(key)
        timer = _Timer(key, self.epoch)

        def _fire() -> None:
            if self._pending.get(key) is not timer:
                logger.debug(f"[timer-abort] key={key} replaced or cancelled")
                return
            del self._pending[key]
            if timer.epoch != self.epoch:
                logger.debug(f"[timer-abort] key={key} epoch={timer.epoch} current={self.epoch}")
                return
            logger.debug(f"[timer-fire] key={key} epoch={timer.epoch}")
            callback(*args)

        timer.handle = self._call_later(delay, _fire)
        self._pending[key] = timer
        logger.debug(f"[timer-set] key={key} delay={delay}s epoch={timer.epoch}")

    def cancel(self, key: str) -> bool:
        timer = self._pending.pop(key, None)
        if timer is None:
            return False
        if timer.handle is not None:
            timer.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self.cancel(key)

    def bump_epoch(self) -> int:
        self.cancel_all()
        self.epoch += 1
        return self.epoch

    def is_pending(self, key: str) -> bool:
        return key in self._pending
