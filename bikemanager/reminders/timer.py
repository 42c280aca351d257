import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

logger = logging.getLogger(__name__)


class CronTimer:
    """Fires `callback` on a cron schedule evaluated in `timezone`, from a daemon thread."""

    def __init__(
        self,
        expression: str,
        timezone: str,
        callback: Callable[[], object],
        clock: Optional[Callable[[ZoneInfo], datetime]] = None,
    ):
        self.expression = expression
        self.tz = ZoneInfo(timezone)
        self.callback = callback
        self.clock = clock or (lambda tz: datetime.now(tz))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_run_time(self, after: Optional[datetime] = None) -> datetime:
        base = (after or self.clock(self.tz)).astimezone(self.tz)
        return croniter(self.expression, base).get_next(datetime)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="maintenance-reminder-cron", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        last_fire: Optional[datetime] = None
        while not self._stop.is_set():
            now = self.clock(self.tz)
            fire_at = self.next_run_time(max(now, last_fire) if last_fire else now)
            logger.info(f"🕐 [Cron] Next run at {fire_at.isoformat()}")
            if self._stop.wait(max((fire_at - now).total_seconds(), 0)):
                break
            last_fire = fire_at
            try:
                self.callback()
            except Exception:
                logger.exception("❌ [Cron] Scheduled callback failed")
