"""Background GPS polling loop."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from ...config import settings
from .service import TrackingService

logger = logging.getLogger(__name__)


class PositionPoller:
    """Fetches every tracked vehicle's position on a fixed interval.

    Vehicles are polled concurrently with each other; samples of one vehicle are
    ingested in order because each cycle waits for the previous one to finish.
    """

    def __init__(
        self,
        service: TrackingService,
        interval_seconds: float | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.service = service
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.poll_interval_seconds
        self.max_workers = max_workers or settings.polling_workers
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="position-poller", daemon=True)
        self._thread.start()
        logger.info(f"Position polling started (every {self.interval_seconds:.0f}s)")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Position polling stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Position polling cycle failed")
            self._stop_event.wait(self.interval_seconds)

    def poll_once(self) -> int:
        """Run one polling cycle. Returns the number of samples ingested."""

        if not self.service.is_within_tracking_hours():
            logger.debug("Outside tracking hours; skipping polling cycle")
            return 0
        vehicles = self.service.tracked_vehicles()
        if not vehicles:
            return 0

        ingested = 0
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(vehicles))) as executor:
            future_to_vehicle = {
                executor.submit(self.service.poll_vehicle, vehicle_id, device_id): vehicle_id
                for vehicle_id, device_id in vehicles
            }
            for future in as_completed(future_to_vehicle):
                vehicle_id = future_to_vehicle[future]
                try:
                    if future.result() is not None:
                        ingested += 1
                except Exception as e:
                    logger.error(f"Polling vehicle {vehicle_id} failed: {e}")
        logger.debug(f"Polling cycle ingested {ingested}/{len(vehicles)} samples")
        return ingested
