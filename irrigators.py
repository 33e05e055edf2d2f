# irrigators.py: one controllable watering actuator, three kinds of driver
from __future__ import annotations
import logging
from enum import Enum
from typing import Optional, Union

import requests

from gpio_driver import ActuatorError, GpioPin
from sensors import HumiditySensor

logger = logging.getLogger(__name__)


class IrrigatorKind(Enum):
    HARDWARE = "hardware"
    REMOTE = "remote"
    LOGGING = "logging"

    @classmethod
    def parse(cls, text: str) -> "IrrigatorKind":
        t = str(text).strip().lower()
        t = _KIND_ALIASES.get(t, t)
        return cls(t)  # ValueError on anything else


_KIND_ALIASES = {"gpio": "hardware", "url": "remote", "log": "logging"}


class GpioDriver:
    def __init__(self, pin: GpioPin):
        self.pin = pin

    def switch(self, on: bool) -> None:
        self.pin.set(on)

    def close(self) -> None:
        self.pin.close()

    def __str__(self) -> str:
        return str(self.pin)


class UrlDriver:
    """GET <url>?state=on|off; any non-2xx answer counts as a failed command."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def switch(self, on: bool) -> None:
        state = "on" if on else "off"
        try:
            r = requests.get(self.url, params={"state": state}, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise ActuatorError(f"{self.url} state={state}: {e}") from e

    def close(self) -> None:
        pass

    def __str__(self) -> str:
        return f"url {self.url}"


class LogDriver:
    def __init__(self, name: str):
        self.name = name

    def switch(self, on: bool) -> None:
        logger.info("[%s] %s", self.name, "ON" if on else "OFF")

    def close(self) -> None:
        pass

    def __str__(self) -> str:
        return "log"


Driver = Union[GpioDriver, UrlDriver, LogDriver]


def make_driver(kind: IrrigatorKind, irrigator_id: int, *, gpio=None, url: Optional[str] = None,
                active_high: bool = True, timeout: float = 5.0) -> Driver:
    if kind is IrrigatorKind.HARDWARE:
        if gpio is None:
            raise ValueError(f"irrigator {irrigator_id}: hardware irrigator needs 'gpio'")
        return GpioDriver(GpioPin(gpio, active_high=active_high))
    if kind is IrrigatorKind.REMOTE:
        if not url:
            raise ValueError(f"irrigator {irrigator_id}: remote irrigator needs 'url'")
        return UrlDriver(url, timeout=timeout)
    if kind is IrrigatorKind.LOGGING:
        return LogDriver(f"irrigator {irrigator_id}")
    raise ValueError(f"Unsupported irrigator type {kind!r}")


class Irrigator:
    def __init__(self, irrigator_id: int, kind: IrrigatorKind, driver: Driver,
                 area: float = 0, humidity_sensor: Optional[HumiditySensor] = None):
        self.id = irrigator_id
        self.kind = kind
        self.area = area
        self.humidity_sensor = humidity_sensor
        self._driver = driver
        self._on = False

    @property
    def is_on(self) -> bool:
        return self._on

    def _switch(self, on: bool) -> bool:
        # state follows the request even if the actuator didn't confirm it
        self._on = on
        try:
            self._driver.switch(on)
        except ActuatorError as e:
            logger.error("Irrigator %s: turning %s failed: %s", self.id, "on" if on else "off", e)
            return False
        logger.info("Irrigator %s %s", self.id, "on" if on else "off")
        return True

    def turn_on(self) -> bool:
        return self._switch(True)

    def turn_off(self) -> bool:
        return self._switch(False)

    def close(self) -> None:
        self._driver.close()

    def as_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "area": self.area,
            "on": self._on,
            "humidity_sensor": self.humidity_sensor.id if self.humidity_sensor else None,
            "driver": str(self._driver),
        }

    def __repr__(self) -> str:
        return f"Irrigator(id={self.id}, kind={self.kind.value}, area={self.area}, driver={self._driver})"
