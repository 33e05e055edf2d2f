# sensors.py: remote humidity / rain sensors with last-known-value fallback
"""
Each sensor answers a plain HTTP GET with a single value in the body:
  humidity -> a number (percent), e.g. "42.5"
  rain     -> "1"/"0", "true"/"false", "yes"/"no", "on"/"off" or a number (> 0 = rain)

A failed read never raises to the caller: the last successful value is returned
and the reading is flagged stale until the next successful read.
"""
from __future__ import annotations
import logging
import datetime as dt
from dataclasses import dataclass
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

_TRUE_WORDS = ("1", "true", "yes", "on", "rain", "raining")
_FALSE_WORDS = ("0", "false", "no", "off", "dry")


class SensorError(Exception):
    """A sensor endpoint could not be read or returned garbage."""


@dataclass(frozen=True)
class Reading:
    value: Any = None
    read_at: Optional[dt.datetime] = None
    stale: bool = False

    def as_dict(self) -> dict:
        return {
            "value": self.value,
            "read_at": self.read_at.isoformat(timespec="seconds") if self.read_at else None,
            "stale": self.stale,
        }


class RemoteSensor:
    kind = "sensor"

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout
        self._value: Any = None
        self._read_at: Optional[dt.datetime] = None
        self._stale = False

    @property
    def last_reading(self) -> Reading:
        return Reading(self._value, self._read_at, self._stale)

    def _parse(self, text: str) -> Any:
        raise NotImplementedError

    def _fetch(self) -> Any:
        try:
            r = requests.get(self.url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise SensorError(f"{self} unreachable: {e}") from e
        return self._parse(r.text.strip())

    def read(self) -> Any:
        """Query the endpoint; on failure fall back to the last known value."""
        try:
            value = self._fetch()
        except SensorError as e:
            self._stale = True
            logger.warning("%s; using last known value %r", e, self._value)
            return self._value
        self._value = value
        self._read_at = dt.datetime.now()
        self._stale = False
        logger.debug("%s read %r", self, value)
        return value


class HumiditySensor(RemoteSensor):
    kind = "humidity"

    def __init__(self, sensor_id: int, url: str, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(url, timeout)
        self.id = sensor_id

    def _parse(self, text: str) -> float:
        try:
            return float(text)
        except ValueError:
            raise SensorError(f"{self} returned non-numeric value {text!r}") from None

    def read_humidity(self) -> Optional[float]:
        return self.read()

    def __str__(self) -> str:
        return f"humidity sensor {self.id} ({self.url})"


class RainSensor(RemoteSensor):
    kind = "rain"

    def _parse(self, text: str) -> bool:
        t = text.lower()
        if t in _TRUE_WORDS:
            return True
        if t in _FALSE_WORDS:
            return False
        try:
            return float(t) > 0
        except ValueError:
            raise SensorError(f"{self} returned unrecognised value {text!r}") from None

    def read_rain(self) -> Optional[bool]:
        return self.read()

    def __str__(self) -> str:
        return f"rain sensor ({self.url})"
