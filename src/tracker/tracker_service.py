#!/usr/bin/env python3
"""
Bus Tracker Service for the Kerala Bus Tracker.

This service runs continuously, recomputing the position, status, ETA and next
stop of every configured bus at a fixed interval, accepting live GPS positions
for buses driven by an operator, and recording stop arrivals in the per-day
trip history stored in DynamoDB.

Environment Variables:
    CONFIG_FILE: Path to routes.yaml configuration file (default: data/routes.yaml)
    HISTORY_TABLE: Name of the DynamoDB trip history table (default: bus_trip_history)
    HISTORY_ENABLED: Record stop arrivals in the history table (default: true)
    TICK_INTERVAL: Seconds between recomputation passes (default: from configuration)
    DRIVING_BUS_ID: Bus whose position this instance broadcasts (default: none)
    AWS_REGION: AWS region for DynamoDB (default: eu-west-1)
    LOG_LEVEL: Logging level (default: INFO)

Usage:
    # Run with default settings
    python tracker_service.py

    # Run without history recording
    HISTORY_ENABLED=false CONFIG_FILE=/config/routes.yaml python tracker_service.py
"""

import os
import sys
import time
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.common.config_loader import load_configuration, ConfigurationError
from src.common.models import Bus, Location, SimulationSettings
from src.common.trip_history_client import TripHistoryClient
from src.tracker.arrival_recorder import (
    TripHistoryRecorder,
    clear_arrivals,
    detect_tick_arrivals,
    merge_trip,
    stamp_arrivals,
)
from src.tracker.bus_simulator import simulate
from src.tracker.live_override import MODE_LIVE, select_mode
from src.tracker.status_classifier import create_status_classifier


logger = logging.getLogger(__name__)


class BusTrackerService:
    """
    Main service class for the Bus Tracker.

    The service owns the current snapshot of all buses. Each tick consumes the
    snapshot, computes a new one with simulate() and swaps it in; arrivals
    detected between the two snapshots are written to the trip history.
    """

    def __init__(
        self,
        config_file: str,
        table_name: str,
        tick_interval: Optional[int] = None,
        region_name: str = "eu-west-1",
        driving_bus_id: Optional[str] = None,
        history_enabled: bool = True
    ):
        """
        Initialize the Bus Tracker Service.

        Args:
            config_file: Path to routes.yaml configuration file
            table_name: DynamoDB trip history table name
            tick_interval: Seconds between ticks; None uses the configured value
            region_name: AWS region name
            driving_bus_id: Bus whose position this instance broadcasts
            history_enabled: Whether to record stop arrivals
        """
        self.config_file = config_file
        self.table_name = table_name
        self.tick_interval = tick_interval
        self.region_name = region_name
        self.driving_bus_id = driving_bus_id
        self.history_enabled = history_enabled

        # State management
        self.buses: List[Bus] = []
        self.settings: SimulationSettings = SimulationSettings()
        self.status_classifier = None
        self._has_baseline = False
        self._trip_date: Optional[str] = None

        # Clients
        self.history_client: Optional[TripHistoryClient] = None
        self.recorder: Optional[TripHistoryRecorder] = None

        logger.info(
            f"Initializing Bus Tracker Service: "
            f"table={table_name}, history_enabled={history_enabled}, "
            f"driving_bus_id={driving_bus_id}, region={region_name}"
        )

    def load_configuration(self) -> None:
        """
        Load routes and simulation settings from the YAML file.

        Raises:
            ConfigurationError: If configuration loading fails
        """
        logger.info(f"Loading configuration from {self.config_file}")

        try:
            routes, settings = load_configuration(self.config_file)
        except ConfigurationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise

        self.buses = routes
        self.settings = settings
        self.status_classifier = create_status_classifier(settings)
        self._has_baseline = False
        self._trip_date = None

        if self.tick_interval is None:
            self.tick_interval = settings.tick_interval_seconds

        logger.info(
            f"Configuration loaded successfully: {len(self.buses)} routes, "
            f"status mode '{settings.status_mode}', interval {self.tick_interval}s"
        )

    def initialize_clients(self) -> None:
        """
        Initialize the trip history client when history recording is enabled.

        Raises:
            Exception: If client initialization fails
        """
        if not self.history_enabled:
            logger.info("History recording disabled, skipping client initialization")
            return

        logger.info("Initializing trip history client")

        try:
            self.history_client = TripHistoryClient(
                table_name=self.table_name,
                region_name=self.region_name,
                max_retries=3
            )
            self.recorder = TripHistoryRecorder(self.history_client)

            logger.info("Clients initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize clients: {e}")
            raise

    def report_live_position(
        self,
        bus_id: str,
        lat: float,
        lng: float,
        updated_at: Optional[datetime] = None
    ) -> Bus:
        """
        Accept a GPS position reported by an operator device.

        The bus stays under live control for the configured live window after
        each report.

        Args:
            bus_id: Bus the position belongs to
            lat: Reported latitude
            lng: Reported longitude
            updated_at: Time of the report (defaults to now)

        Returns:
            The updated Bus

        Raises:
            ValueError: If the bus is unknown or the coordinates are invalid
        """
        location = Location(lat=lat, lng=lng)
        location.validate()

        for i, bus in enumerate(self.buses):
            if bus.id == bus_id:
                updated = replace(bus, current_location=location, updated_at=updated_at or datetime.now())
                self.buses[i] = updated
                logger.debug(f"Live position for bus {bus_id}: ({lat:.6f}, {lng:.6f})")
                return updated

        raise ValueError(f"Unknown bus: {bus_id}")

    def tick(self, now: Optional[datetime] = None) -> List[Bus]:
        """
        Run one recomputation pass over all buses.

        The first tick after loading only establishes a baseline; arrivals are
        detected from the second tick on. Detected arrivals are stamped onto
        the stops as actual arrival times, which the schedule status mode
        reads on the following ticks, and written to the trip history.

        Args:
            now: Time of the tick (defaults to now)

        Returns:
            The new bus snapshot
        """
        now = now or datetime.now()
        self._start_trip_day(now)
        previous = self.buses

        current = simulate(
            previous,
            driving_bus_id=self.driving_bus_id,
            now=now,
            settings=self.settings,
            status_classifier=self.status_classifier,
        )

        if self._has_baseline:
            live_window = timedelta(seconds=self.settings.live_window_seconds)
            live_bus_ids = [
                bus.id for bus in previous
                if select_mode(bus, self.driving_bus_id, now, live_window) == MODE_LIVE
            ]
            arrivals_by_bus = detect_tick_arrivals(previous, current, now, live_bus_ids)
            current = [stamp_arrivals(bus, arrivals_by_bus.get(bus.id, [])) for bus in current]

            if self.recorder is not None:
                self.recorder.record_arrivals(current, arrivals_by_bus)

        self.buses = current
        self._has_baseline = True

        for bus in current:
            logger.debug(
                f"Bus {bus.id} ({bus.direction}): ({bus.current_location.lat:.6f}, "
                f"{bus.current_location.lng:.6f}), status {bus.status}, "
                f"next stop {bus.next_stop_name}, eta {bus.eta}"
            )

        return current

    def _start_trip_day(self, now: datetime) -> None:
        """
        Reset actual arrival times when the day changes.

        Arrivals already recorded for the new day, by this instance before a
        restart or by another writer, are loaded from the trip history.
        """
        trip_date = now.strftime("%Y-%m-%d")
        if trip_date == self._trip_date:
            return

        logger.info(f"Starting trip day {trip_date}")
        buses = [clear_arrivals(bus) for bus in self.buses]
        if self.history_client is not None:
            buses = [self._load_trip(bus, trip_date) for bus in buses]

        self.buses = buses
        self._trip_date = trip_date

    def _load_trip(self, bus: Bus, trip_date: str) -> Bus:
        try:
            trip = self.history_client.get_trip(bus.id, trip_date)
        except Exception as e:
            logger.error(f"Failed to load trip history for bus {bus.id} on {trip_date}: {e}")
            return bus

        if trip is None:
            return bus

        logger.debug(f"Loaded trip history for bus {bus.id} on {trip_date}")
        return merge_trip(bus, trip)

    def run(self) -> None:
        """
        Main service loop - runs continuously until interrupted.

        This method:
        1. Loads configuration
        2. Initializes clients
        3. Runs an infinite loop recomputing buses at regular intervals
        4. Handles errors gracefully with logging
        """
        logger.info("Starting Bus Tracker Service")

        try:
            self.load_configuration()
            self.initialize_clients()
        except Exception as e:
            logger.critical(f"Fatal error during service initialization: {e}", exc_info=True)
            sys.exit(1)

        logger.info(
            f"Service initialized successfully. "
            f"Starting tracking loop (interval: {self.tick_interval}s)"
        )

        iteration = 0
        while True:
            iteration += 1
            loop_start = time.time()

            try:
                logger.debug(f"Starting iteration {iteration}")
                self.tick()

                elapsed = time.time() - loop_start
                sleep_time = max(0, self.tick_interval - elapsed)

                if sleep_time > 0:
                    time.sleep(sleep_time)
                else:
                    logger.warning(
                        f"Iteration {iteration} took {elapsed:.2f}s, "
                        f"which exceeds the configured interval of {self.tick_interval}s"
                    )

            except KeyboardInterrupt:
                logger.info("Received interrupt signal, shutting down gracefully")
                break
            except Exception as e:
                logger.error(f"Error in main loop iteration {iteration}: {e}", exc_info=True)
                time.sleep(self.tick_interval)

        logger.info("Bus Tracker Service stopped")


def configure_logging() -> None:
    log_level = os.getenv('LOG_LEVEL', 'INFO')
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def main():
    """
    Main entry point for the Bus Tracker Service.

    Reads configuration from environment variables and starts the service.
    """
    configure_logging()

    config_file = os.getenv('CONFIG_FILE', 'data/routes.yaml')
    table_name = os.getenv('HISTORY_TABLE', 'bus_trip_history')
    history_enabled = os.getenv('HISTORY_ENABLED', 'true').lower() in ('1', 'true', 'yes')
    tick_interval = os.getenv('TICK_INTERVAL')
    driving_bus_id = os.getenv('DRIVING_BUS_ID') or None
    region_name = os.getenv('AWS_REGION', 'eu-west-1')

    if not os.path.exists(config_file):
        logger.error(f"Configuration file not found: {config_file}")
        sys.exit(1)

    if tick_interval is not None:
        try:
            tick_interval = int(tick_interval)
        except ValueError:
            logger.error(f"TICK_INTERVAL must be an integer, got {tick_interval}")
            sys.exit(1)
        if tick_interval <= 0:
            logger.error(f"TICK_INTERVAL must be positive, got {tick_interval}")
            sys.exit(1)

    service = BusTrackerService(
        config_file=config_file,
        table_name=table_name,
        tick_interval=tick_interval,
        region_name=region_name,
        driving_bus_id=driving_bus_id,
        history_enabled=history_enabled
    )

    service.run()


if __name__ == '__main__':
    main()
