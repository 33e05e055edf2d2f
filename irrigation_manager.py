#!/usr/bin/env python3
"""
Irrigation manager: startup, the once-a-minute scheduler loop and shutdown.

Usage:
  python irrigation_manager.py --config config.json
  python irrigation_manager.py --config config.json --test      # mock GPIO pins
  python irrigation_manager.py --config config.json --check     # validate and exit
"""
from __future__ import annotations
import argparse
import logging
import signal
import sys
import threading
import datetime as dt
from typing import Any, Callable, Dict, Optional

from active_cycle import ActiveCycle
from admin_api import AdminServer
from gpio_driver import use_mock_pins
from ii_config import Settings, load_settings, setup_logging
from schedule_manager import ConfigError, DurationMode, ScheduleRegistry

logger = logging.getLogger(__name__)

ONE_MINUTE = dt.timedelta(minutes=1)


def first_tick(now: dt.datetime, tick_second: int) -> dt.datetime:
    """The scheduler's first wake-up: next minute at `tick_second`."""
    return now.replace(second=tick_second, microsecond=0) + ONE_MINUTE


class IrrigationManager:
    def __init__(self, registry: ScheduleRegistry, wet_threshold: float = 80.0, tick_second: int = 10,
                 clock: Callable[[], dt.datetime] = dt.datetime.now):
        self.registry = registry
        self.wet_threshold = wet_threshold
        self.tick_second = tick_second
        self.clock = clock
        self.active_cycle: Optional[ActiveCycle] = None
        self.admin: Optional[AdminServer] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "IrrigationManager":
        if settings.test_environment:
            use_mock_pins()
        registry = ScheduleRegistry.from_config(
            settings.system,
            sensor_timeout=settings.sensor_timeout,
            actuator_timeout=settings.actuator_timeout,
            duration_mode=DurationMode.parse(settings.duration_mode),
        )
        registry.dump()
        manager = cls(registry, wet_threshold=settings.wet_threshold, tick_second=settings.tick_second)
        if settings.admin.enabled:
            manager.admin = AdminServer(manager, settings.admin.host, settings.admin.port, settings.admin.api_key)
        return manager

    # ---------------- scheduling ----------------
    def tick(self, now: dt.datetime) -> None:
        """One scheduler step for the minute `now`."""
        with self._lock:
            try:
                if self.active_cycle is None:
                    cycle = self.registry.match(now)
                    if cycle is not None:
                        self.active_cycle = ActiveCycle.start(
                            cycle, now, rain_sensor=self.registry.rain_sensor,
                            wet_threshold=self.wet_threshold)
                if self.active_cycle is not None:
                    self.active_cycle = self.active_cycle.update(now)
            except Exception:
                logger.exception("Error in scheduler tick at %s; aborting active cycle", now)
                if self.active_cycle is not None:
                    self.active_cycle.stop()
                    self.active_cycle = None

    def run(self) -> None:
        """Tick once a minute until shutdown(); always leaves every irrigator off."""
        try:
            self.registry.all_off()
            if self.admin is not None:
                self.admin.start()
            logger.info("Init complete")

            deadline = first_tick(self.clock(), self.tick_second)
            while not self._stop.is_set():
                wait = (deadline - self.clock()).total_seconds()
                if wait > 0 and self._stop.wait(wait):
                    break
                self.tick(deadline.replace(second=0))
                deadline += ONE_MINUTE
        finally:
            self.stop()

    # ---------------- admin surface ----------------
    def shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()

    @property
    def is_shutdown(self) -> bool:
        return self._stop.is_set()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            rain = self.registry.rain_sensor
            return {
                "shutdown": self.is_shutdown,
                "active_cycle": self.active_cycle.as_dict() if self.active_cycle else None,
                "irrigators": {str(i): irr.as_dict() for i, irr in self.registry.irrigators.items()},
                "humidity_sensors": {str(i): s.last_reading.as_dict()
                                     for i, s in self.registry.humidity_sensors.items()},
                "rain_sensor": rain.last_reading.as_dict() if rain else None,
            }

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._stop.set()
            if self.active_cycle is not None:
                self.active_cycle.stop()
                self.active_cycle = None
            self.registry.all_off()
            self.registry.close()
        if self.admin is not None:
            self.admin.stop()
        logger.info("Shutdown complete")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Scheduled, sensor-gated irrigation controller")
    parser.add_argument("--config", help="Path to the JSON config (default: $II_CONFIG or config.json)")
    parser.add_argument("--test", action="store_true", help="Test environment: simulated GPIO pins")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ... (default: $II_LOG_LEVEL or INFO)")
    parser.add_argument("--check", action="store_true", help="Validate the configuration and exit")
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config, test_environment=args.test or args.check or None,
                                 log_level=args.log_level)
    except (OSError, ValueError) as e:
        setup_logging()
        logger.error("Cannot load settings: %s", e)
        return 2
    setup_logging(settings.log_level, settings.log_file)

    if args.check:
        settings.admin.enabled = False
    try:
        manager = IrrigationManager.from_settings(settings)
    except ConfigError as e:
        logger.error("Invalid configuration in %s: %s", settings.config_path, e)
        return 2

    if args.check:
        manager.registry.close()
        logger.info("Configuration OK")
        return 0

    def _graceful_exit(signum, _frame):
        logger.info("Received signal %s", signum)
        manager.shutdown()

    signal.signal(signal.SIGINT, _graceful_exit)
    signal.signal(signal.SIGTERM, _graceful_exit)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _graceful_exit)

    try:
        manager.run()
    except Exception:
        logger.exception("Error running application")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
