# schedule_manager.py: cycles, the schedule registry and the minute matcher
"""
The registry is built once at startup from the "humidity_sensors",
"rain_sensor", "irrigators" and "cycles" sections of the config file, in
three passes:

  1. sensors and primitive irrigators (those with a "type"),
  2. composite irrigators ({"id": 10, "irrigators": [1, 2]}) resolved against
     the primitives,
  3. cycles, whose "irrigators" list may name primitives or composites; each
     entry becomes one group.

Any reference that cannot be resolved raises ConfigError before anything is
scheduled.

Weekdays use 1 = Sunday, 2 = Monday ... 7 = Saturday.
"""
from __future__ import annotations
import logging
import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from gpio_driver import ActuatorError
from irrigators import Irrigator, IrrigatorKind, make_driver
from sensors import HumiditySensor, RainSensor

logger = logging.getLogger(__name__)

Group = Tuple[Irrigator, ...]


class ConfigErrorKind(Enum):
    UNKNOWN_IRRIGATOR = "unknown irrigator"
    UNKNOWN_SENSOR = "unknown sensor"
    UNSUPPORTED_TYPE = "unsupported type"
    INVALID_VALUE = "invalid value"


class ConfigError(ValueError):
    def __init__(self, kind: ConfigErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class DurationMode(Enum):
    PER_GROUP = "per_group"   # every group waters for the full duration
    SPLIT = "split"           # duration is shared out across the groups

    @classmethod
    def parse(cls, text: str) -> "DurationMode":
        try:
            return cls(str(text).strip().lower())
        except ValueError:
            raise ConfigError(ConfigErrorKind.INVALID_VALUE,
                              f"duration_mode must be one of {[m.value for m in cls]}, got {text!r}") from None


def calendar_weekday(when: dt.datetime) -> int:
    """1 = Sunday ... 7 = Saturday."""
    return when.isoweekday() % 7 + 1


@dataclass(frozen=True)
class Cycle:
    id: int
    start: str                       # "HHMM"
    days_of_week: FrozenSet[int]
    duration: int                    # minutes
    groups: Tuple[Group, ...]
    duration_mode: DurationMode = DurationMode.PER_GROUP

    @property
    def dwell(self) -> int:
        """Minutes each group stays active."""
        if self.duration_mode is DurationMode.SPLIT and self.groups:
            return max(1, self.duration // len(self.groups))
        return self.duration

    def matches(self, when: dt.datetime) -> bool:
        return when.strftime("%H%M") == self.start and calendar_weekday(when) in self.days_of_week

    def __str__(self) -> str:
        groups = ", ".join("[" + ", ".join(str(i.id) for i in g) + "]" for g in self.groups)
        days = ",".join(str(d) for d in sorted(self.days_of_week))
        return (f"cycle {self.id} start={self.start} days={days} duration={self.duration}min "
                f"({self.duration_mode.value}) groups={groups}")


def match_cycle(cycles, when: dt.datetime) -> Optional[Cycle]:
    """First cycle whose start time and weekday match `when`, else None."""
    for cycle in cycles:
        if cycle.matches(when):
            return cycle
    return None


# ---------------- config parsing helpers ----------------
def _int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} must be an integer, got {value!r}") from None


def _section(system: Mapping[str, Any], key: str) -> list:
    value = system.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"'{key}' must be a list, got {value!r}")
    return value


def _entry(entry: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(entry, Mapping):
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} must be an object, got {entry!r}")
    return entry


_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off")


def _flag(value: Any, what: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_WORDS + _FALSE_WORDS:
        return value.strip().lower() in _TRUE_WORDS
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} must be true or false, got {value!r}")


def _require(entry: Mapping[str, Any], key: str, what: str) -> Any:
    if entry.get(key) is None:
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} is missing '{key}'")
    return entry[key]


def _parse_start(value: Any, what: str) -> str:
    s = str(value).strip().replace(":", "")
    if len(s) == 3:
        s = "0" + s
    if len(s) != 4 or not s.isdigit() or int(s[:2]) > 23 or int(s[2:]) > 59:
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} has invalid start {value!r} (expected HHMM)")
    return s


def _parse_days(value: Any, what: str) -> FrozenSet[int]:
    if not isinstance(value, (list, tuple)) or not value:
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} needs a non-empty 'days_of_week' list")
    days = frozenset(_int(d, f"{what} weekday") for d in value)
    bad = sorted(d for d in days if not 1 <= d <= 7)
    if bad:
        raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} has weekdays {bad} outside 1..7")
    return days


class ScheduleRegistry:
    def __init__(self, cycles: List[Cycle], irrigators: Dict[int, Irrigator],
                 groups: Dict[int, Group], humidity_sensors: Dict[int, HumiditySensor],
                 rain_sensor: Optional[RainSensor] = None):
        self.cycles: Tuple[Cycle, ...] = tuple(cycles)
        self.irrigators = irrigators
        self.groups = groups
        self.humidity_sensors = humidity_sensors
        self.rain_sensor = rain_sensor

    def match(self, when: dt.datetime) -> Optional[Cycle]:
        return match_cycle(self.cycles, when)

    def all_off(self) -> None:
        for irrigator in self.irrigators.values():
            irrigator.turn_off()

    def close(self) -> None:
        for irrigator in self.irrigators.values():
            irrigator.close()

    def dump(self) -> None:
        logger.info("rain sensor: %s", self.rain_sensor or "none")
        logger.info("%d humidity sensors:", len(self.humidity_sensors))
        for sensor in self.humidity_sensors.values():
            logger.info("  %s", sensor)
        logger.info("%d irrigators:", len(self.irrigators))
        for irrigator in self.irrigators.values():
            logger.info("  %r", irrigator)
        logger.info("%d cycles:", len(self.cycles))
        for cycle in self.cycles:
            logger.info("  %s", cycle)

    @classmethod
    def from_config(cls, system: Mapping[str, Any], *, sensor_timeout: float = 5.0,
                    actuator_timeout: float = 5.0,
                    duration_mode: DurationMode = DurationMode.PER_GROUP) -> "ScheduleRegistry":
        built: Dict[int, Irrigator] = {}
        try:
            return cls._build(system, built, sensor_timeout, actuator_timeout, duration_mode)
        except Exception:
            # release any pins claimed before the failure
            for irrigator in built.values():
                irrigator.close()
            raise

    @classmethod
    def _build(cls, system, primitives, sensor_timeout, actuator_timeout, duration_mode):
        # --- sensors ---
        humidity_sensors: Dict[int, HumiditySensor] = {}
        for entry in _section(system, "humidity_sensors"):
            entry = _entry(entry, "humidity sensor")
            sid = _int(_require(entry, "id", "humidity sensor"), "humidity sensor id")
            if sid in humidity_sensors:
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"duplicate humidity sensor id {sid}")
            url = _require(entry, "url", f"humidity sensor {sid}")
            humidity_sensors[sid] = HumiditySensor(sid, url, timeout=sensor_timeout)

        rain_sensor = None
        rain_cfg = system.get("rain_sensor")
        if isinstance(rain_cfg, str) and rain_cfg.strip():
            rain_sensor = RainSensor(rain_cfg.strip(), timeout=sensor_timeout)
        elif rain_cfg:
            rain_cfg = _entry(rain_cfg, "rain sensor")
            rain_sensor = RainSensor(_require(rain_cfg, "url", "rain sensor"), timeout=sensor_timeout)

        # --- pass 1: primitive irrigators ---
        entries = _section(system, "irrigators")
        composites = []
        seen = set()
        for entry in entries:
            entry = _entry(entry, "irrigator")
            iid = _int(_require(entry, "id", "irrigator"), "irrigator id")
            if iid in seen:
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"duplicate irrigator id {iid}")
            seen.add(iid)
            if entry.get("irrigators") is not None:
                if not isinstance(entry["irrigators"], list):
                    raise ConfigError(ConfigErrorKind.INVALID_VALUE,
                                      f"composite irrigator {iid} needs an 'irrigators' list")
                composites.append((iid, entry["irrigators"]))
                continue
            primitives[iid] = cls._build_irrigator(iid, entry, humidity_sensors, actuator_timeout)

        # --- pass 2: groups (primitives + composites) ---
        groups: Dict[int, Group] = {iid: (irr,) for iid, irr in primitives.items()}
        for iid, member_ids in composites:
            members = []
            for mid in member_ids:
                mid = _int(mid, f"irrigator {iid} member")
                if mid not in primitives:
                    raise ConfigError(ConfigErrorKind.UNKNOWN_IRRIGATOR,
                                      f"irrigator '{mid}' used by composite irrigator '{iid}'")
                members.append(primitives[mid])
            if not members:
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"composite irrigator {iid} is empty")
            groups[iid] = tuple(members)

        # --- pass 3: cycles ---
        cycles: List[Cycle] = []
        cycle_ids = set()
        for entry in _section(system, "cycles"):
            entry = _entry(entry, "cycle")
            cid = _int(_require(entry, "id", "cycle"), "cycle id")
            if cid in cycle_ids:
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"duplicate cycle id {cid}")
            cycle_ids.add(cid)
            what = f"cycle {cid}"
            duration = _int(_require(entry, "duration", what), f"{what} duration")
            if duration <= 0:
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} duration must be > 0")
            cycle_groups = []
            refs = entry.get("irrigators") or []
            if not isinstance(refs, list):
                raise ConfigError(ConfigErrorKind.INVALID_VALUE, f"{what} needs an 'irrigators' list")
            for ref in refs:
                ref = _int(ref, f"{what} irrigator")
                if ref not in groups:
                    raise ConfigError(ConfigErrorKind.UNKNOWN_IRRIGATOR, f"irrigator '{ref}' used by {what}")
                cycle_groups.append(groups[ref])
            mode = duration_mode
            if entry.get("duration_mode") is not None:
                mode = DurationMode.parse(entry["duration_mode"])
            cycles.append(Cycle(
                id=cid,
                start=_parse_start(_require(entry, "start", what), what),
                days_of_week=_parse_days(entry.get("days_of_week"), what),
                duration=duration,
                groups=tuple(cycle_groups),
                duration_mode=mode,
            ))

        return cls(cycles, dict(primitives), groups, humidity_sensors, rain_sensor)

    @staticmethod
    def _build_irrigator(iid, entry, humidity_sensors, actuator_timeout) -> Irrigator:
        type_str = _require(entry, "type", f"irrigator {iid}")
        try:
            kind = IrrigatorKind.parse(type_str)
        except ValueError:
            raise ConfigError(ConfigErrorKind.UNSUPPORTED_TYPE,
                              f"irrigator {iid} has unsupported type {type_str!r}") from None

        sensor = None
        sensor_ref = entry.get("humidity_sensor")
        if sensor_ref is not None:
            sensor_id = _int(sensor_ref, f"irrigator {iid} humidity_sensor")
            sensor = humidity_sensors.get(sensor_id)
            if sensor is None:
                raise ConfigError(ConfigErrorKind.UNKNOWN_SENSOR,
                                  f"humidity sensor '{sensor_id}' used by irrigator '{iid}'")

        try:
            driver = make_driver(kind, iid, gpio=entry.get("gpio"), url=entry.get("url"),
                                 active_high=_flag(entry.get("active_high", True), f"irrigator {iid} active_high"),
                                 timeout=actuator_timeout)
        except (ValueError, ActuatorError) as e:
            raise ConfigError(ConfigErrorKind.INVALID_VALUE, str(e)) from e

        area = entry.get("area", 0)
        return Irrigator(iid, kind, driver, area=area, humidity_sensor=sensor)
