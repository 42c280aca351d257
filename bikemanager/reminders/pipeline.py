import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .config import ReminderSettings, settings as default_settings
from .handler import MaintenanceReminderHandler
from .notifier import Notifier, ReminderNotifier
from .queue import ReminderQueue, create_reminder_queue
from .scanner import MaintenanceReminderScanner

logger = logging.getLogger(__name__)


@dataclass
class ReminderPipeline:
    """Handler, queue and scanner wired together for one process."""
    settings: ReminderSettings
    handler: MaintenanceReminderHandler
    queue: ReminderQueue
    scanner: MaintenanceReminderScanner

    def start(self) -> None:
        logger.info(f"🚀 [Reminders] Starting maintenance reminder pipeline ({self.queue.backend_name} queue)")
        self.scanner.start()

    def close(self) -> None:
        logger.info("⏹️ [Reminders] Shutting down maintenance reminder pipeline...")
        self.scanner.stop()
        self.queue.close()
        logger.info("✅ [Reminders] Maintenance reminder pipeline stopped")


def build_pipeline(
    session_factory: Optional[Callable[[], Session]] = None,
    notifier: Optional[Notifier] = None,
    settings: ReminderSettings = default_settings,
    **queue_kwargs,
) -> ReminderPipeline:
    if session_factory is None:
        from bikemanager.db.session import SessionLocal as session_factory
    handler = MaintenanceReminderHandler(session_factory, notifier or ReminderNotifier())
    queue = create_reminder_queue(settings, handler, **queue_kwargs)
    scanner = MaintenanceReminderScanner(session_factory, queue, settings)
    return ReminderPipeline(settings=settings, handler=handler, queue=queue, scanner=scanner)
