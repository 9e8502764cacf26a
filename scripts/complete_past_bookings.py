"""Cron entry point: `0 0 * * * python -m scripts.complete_past_bookings`."""

import logging
import os

from src.application.scheduler import DailySweepScheduler


def main() -> None:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    completed = DailySweepScheduler().run_once()
    print(f"Sweep complete: {completed} booking(s) marked completed.")


if __name__ == "__main__":
    main()
