# active_cycle.py: runs one matched cycle group by group, one tick per minute
from __future__ import annotations
import logging
import datetime as dt
from typing import Any, Dict, Optional, Set

from schedule_manager import Cycle, Group
from sensors import RainSensor
from weather_override import decide_override, should_skip

logger = logging.getLogger(__name__)


def _minute(when: dt.datetime) -> dt.datetime:
    return when.replace(second=0, microsecond=0)


class ActiveCycle:
    """
    State: the index of the group currently watering and the minute it was
    activated. update() returns self while groups remain, None once the last
    group's dwell has elapsed.
    """

    def __init__(self, cycle: Cycle, now: dt.datetime, rain_sensor: Optional[RainSensor] = None,
                 wet_threshold: float = 80.0):
        self.cycle = cycle
        self.rain_sensor = rain_sensor
        self.wet_threshold = wet_threshold
        self.group_index = 0
        self.activated_at = now
        self.suppressed: Set[int] = set()

    @classmethod
    def start(cls, cycle: Cycle, now: dt.datetime, rain_sensor: Optional[RainSensor] = None,
              wet_threshold: float = 80.0) -> Optional["ActiveCycle"]:
        if not cycle.groups:
            logger.warning("Cycle %s has no irrigators, nothing to do", cycle.id)
            return None
        active = cls(cycle, now, rain_sensor=rain_sensor, wet_threshold=wet_threshold)
        logger.info("Starting cycle %s (%d groups, %d min each)", cycle.id, len(cycle.groups), cycle.dwell)
        try:
            active._activate()
        except Exception:
            active._deactivate()
            raise
        return active

    @property
    def group(self) -> Group:
        return self.cycle.groups[self.group_index]

    def elapsed_minutes(self, now: dt.datetime) -> int:
        return int((_minute(now) - _minute(self.activated_at)).total_seconds() // 60)

    def _activate(self) -> None:
        self.suppressed = set()
        raining = None
        rain_stale = False
        if self.rain_sensor is not None:
            raining = self.rain_sensor.read_rain()
            rain_stale = self.rain_sensor.last_reading.stale

        for irrigator in self.group:
            humidity = None
            stale = rain_stale
            if irrigator.humidity_sensor is not None:
                humidity = irrigator.humidity_sensor.read_humidity()
                stale = stale or irrigator.humidity_sensor.last_reading.stale
            decision = decide_override(raining, humidity, {"wet_threshold_pct": self.wet_threshold}, stale=stale)
            if should_skip(decision):
                self.suppressed.add(irrigator.id)
                logger.info("Cycle %s group %d: irrigator %s skipped. %s",
                            self.cycle.id, self.group_index, irrigator.id, decision["reason"])
                continue
            irrigator.turn_on()

    def _deactivate(self) -> None:
        for irrigator in self.group:
            irrigator.turn_off()

    def update(self, now: dt.datetime) -> Optional["ActiveCycle"]:
        if self.elapsed_minutes(now) < self.cycle.dwell:
            return self

        self._deactivate()
        if self.group_index + 1 >= len(self.cycle.groups):
            logger.info("Cycle %s finished", self.cycle.id)
            return None

        self.group_index += 1
        self.activated_at = now
        logger.info("Cycle %s: advancing to group %d", self.cycle.id, self.group_index)
        self._activate()
        return self

    def stop(self) -> None:
        """Turn off the current group (shutdown / aborted cycle)."""
        logger.info("Cycle %s stopped in group %d", self.cycle.id, self.group_index)
        self._deactivate()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle.id,
            "group_index": self.group_index,
            "group_count": len(self.cycle.groups),
            "group_activated_at": self.activated_at.isoformat(timespec="seconds"),
            "irrigators": [i.id for i in self.group],
            "suppressed": sorted(self.suppressed),
        }
