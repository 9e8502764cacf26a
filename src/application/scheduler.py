import logging
import os
import threading
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.application.booking_service import BookingService
from src.domain.exceptions import TransactionFailureError
from src.domain.pricing import utc_now
from src.infrastructure.db.session import SessionLocal, get_db_session

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """Seconds from ``now`` until the next ``hour_utc``:00 UTC boundary."""
    next_run = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class DailySweepScheduler:
    """
    Background thread that completes past confirmed bookings once a day.

    A failed run is logged and retried at the next boundary; the thread
    itself never dies on a database error.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        hour_utc: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.hour_utc = (
            hour_utc if hour_utc is not None else int(os.getenv("AUTO_COMPLETE_HOUR_UTC", "0"))
        )
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> int:
        try:
            with get_db_session(self.session_factory) as db:
                return BookingService(db, clock=self.clock).complete_past_events()
        except (TransactionFailureError, SQLAlchemyError):
            logger.exception("Daily booking sweep failed.")
            return 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="daily-booking-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("Daily booking sweep scheduled at %02d:00 UTC.", self.hour_utc)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(seconds_until_next_run(self.clock(), self.hour_utc)):
            self.run_once()
