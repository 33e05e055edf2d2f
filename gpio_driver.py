"""
gpio_driver.py: Raspberry Pi output pins for valve relays, on top of gpiozero.
- Works on a real Pi (whatever pin factory gpiozero picks) or on laptops/CI
  with gpiozero's MockFactory (see use_mock_pins()).
- Active level is configurable for your specific relay board.
"""

import logging
from typing import Union

from gpiozero import Device, OutputDevice
from gpiozero.exc import GPIOZeroError
from gpiozero.pins.mock import MockFactory

logger = logging.getLogger(__name__)

PinId = Union[int, str]


class ActuatorError(Exception):
    """An on/off command could not be delivered to the actuator."""


def use_mock_pins() -> None:
    """Switch gpiozero to simulated pins (test environment, dev machines)."""
    Device.pin_factory = MockFactory()
    logger.info("GPIO: using mock pin factory")


def parse_pin(pin: PinId) -> PinId:
    # "17" -> 17; "GPIO17", "BCM17", "BOARD11" are understood by gpiozero as-is
    if isinstance(pin, str) and pin.strip().isdigit():
        return int(pin.strip())
    return pin.strip() if isinstance(pin, str) else pin


class GpioPin:
    def __init__(self, pin: PinId, active_high: bool = True):
        self.pin = parse_pin(pin)
        self.active_high = active_high
        try:
            self._dev = OutputDevice(self.pin, active_high=active_high, initial_value=False)
        except GPIOZeroError as e:
            raise ActuatorError(f"cannot claim pin {pin}: {e}") from e

    def set(self, on: bool) -> None:
        try:
            if on:
                self._dev.on()
            else:
                self._dev.off()
        except GPIOZeroError as e:
            raise ActuatorError(f"pin {self.pin}: {e}") from e

    @property
    def value(self) -> bool:
        return bool(self._dev.value)

    def close(self) -> None:
        if self._dev.closed:
            return
        try:
            self._dev.off()
        finally:
            self._dev.close()

    def __str__(self) -> str:
        return f"gpio {self.pin}{'' if self.active_high else ' (active-low)'}"
