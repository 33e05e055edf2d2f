import datetime as dt

import pytest
import requests
from gpiozero import Device
from gpiozero.pins.mock import MockFactory

from schedule_manager import ScheduleRegistry

# 2024-01-01 is a Monday
MONDAY = dt.datetime(2024, 1, 1)
TUESDAY = dt.datetime(2024, 1, 2)


def at(day: dt.datetime, hhmm: str) -> dt.datetime:
    return day.replace(hour=int(hhmm[:2]), minute=int(hhmm[2:]))


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeHttp:
    """Stands in for requests.get; answers per URL and records every call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def set(self, url, text="", status_code=200, error=None):
        self.routes[url] = error if error is not None else FakeResponse(text, status_code)

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        answer = self.routes.get(url)
        if answer is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(answer, Exception):
            raise answer
        return answer

    def states(self, url):
        return [p["state"] for u, p, _ in self.calls if u == url and p]


@pytest.fixture(autouse=True)
def mock_pins():
    Device.pin_factory = MockFactory()
    yield Device.pin_factory
    Device.pin_factory.reset()


@pytest.fixture
def http(monkeypatch):
    fake = FakeHttp()
    monkeypatch.setattr(requests, "get", fake.get)
    return fake


@pytest.fixture
def build_registry():
    built = []

    def _build(system, **kw):
        registry = ScheduleRegistry.from_config(system, **kw)
        built.append(registry)
        return registry

    yield _build
    for registry in built:
        registry.close()


def log_irrigators(*ids, sensors=None):
    sensors = sensors or {}
    return [{"id": i, "type": "logging", "area": 1, "humidity_sensor": sensors.get(i)} for i in ids]
