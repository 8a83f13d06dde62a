import asyncio


class LifecycleGuard:
    """Mounted/started flags shared by an orchestrator and its poller.

    Once unmounted the guard never mounts again; a torn-down owner gets a
    fresh orchestrator. Sleeping through the guard is what lets teardown cut
    a pending poll interval short.
    """

    def __init__(self) -> None:
        self._mounted = True
        self._started = False
        self._unmounted = asyncio.Event()

    def is_mounted(self) -> bool:
        return self._mounted

    def has_started(self) -> bool:
        return self._started

    def mark_started(self) -> None:
        self._started = True

    def mark_unmounted(self) -> None:
        self._mounted = False
        self._started = False
        self._unmounted.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`; False if unmounted before or during the wait."""
        if not self._mounted:
            return False
        try:
            await asyncio.wait_for(self._unmounted.wait(), timeout=max(seconds, 0.0))
        except asyncio.TimeoutError:
            return self._mounted
        return False
