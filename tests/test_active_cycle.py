import datetime as dt

import pytest

from active_cycle import ActiveCycle
from conftest import MONDAY, at, log_irrigators

SCENARIO = {
    "humidity_sensors": [{"id": 1, "url": "http://hum-x"}],
    "irrigators": log_irrigators(1, 2, 3, sensors={1: 1}) + [{"id": 10, "irrigators": [2, 3]}],
    "cycles": [{"id": 1, "start": "0610", "days_of_week": [2], "duration": 10, "irrigators": [1, 10]}],
}


@pytest.fixture
def registry(build_registry, http):
    http.set("http://hum-x", "40")
    return build_registry(SCENARIO)


def _on(registry):
    return sorted(i for i, irr in registry.irrigators.items() if irr.is_on)


def test_scenario_a_groups_run_in_order(registry):
    start = at(MONDAY, "0610")
    cycle = registry.match(start)
    active = ActiveCycle.start(cycle, start)
    assert _on(registry) == [1]

    active = active.update(at(MONDAY, "0615"))
    assert active.group_index == 0
    assert _on(registry) == [1]

    active = active.update(at(MONDAY, "0620"))
    assert active.group_index == 1
    assert _on(registry) == [2, 3]

    assert active.update(at(MONDAY, "0630")) is None
    assert _on(registry) == []


def test_scenario_c_wet_soil_skips_but_keeps_timing(registry, http):
    http.set("http://hum-x", "90")
    start = at(MONDAY, "0610")
    active = ActiveCycle.start(registry.cycles[0], start, wet_threshold=80)
    assert _on(registry) == []
    assert active.suppressed == {1}

    assert active.update(at(MONDAY, "0619")).group_index == 0
    active = active.update(at(MONDAY, "0620"))
    assert active.group_index == 1
    assert _on(registry) == [2, 3]


def test_humidity_at_threshold_counts_as_wet(registry, http):
    http.set("http://hum-x", "80")
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"), wet_threshold=80)
    assert active.suppressed == {1}


def test_scenario_d_rain_skips_whole_group_then_rechecks(build_registry, http):
    from sensors import RainSensor

    http.set("http://hum-x", "10")
    http.set("http://rain", "1")
    registry = build_registry(SCENARIO)
    rain = RainSensor("http://rain")
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"), rain_sensor=rain)
    assert _on(registry) == []
    assert active.suppressed == {1}

    http.set("http://rain", "0")
    active = active.update(at(MONDAY, "0620"))
    assert active.suppressed == set()
    assert _on(registry) == [2, 3]


def test_rain_skips_every_member_of_a_group(build_registry, http):
    from sensors import RainSensor

    http.set("http://hum-x", "10")
    http.set("http://rain", "yes")
    registry = build_registry(SCENARIO)
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"), rain_sensor=RainSensor("http://rain"))
    active = active.update(at(MONDAY, "0620"))
    assert active.suppressed == {2, 3}
    assert _on(registry) == []


def test_dwell_sum_and_monotonic_groups(registry):
    start = at(MONDAY, "0610")
    active = ActiveCycle.start(registry.cycles[0], start)
    seen = [(active.group_index, start)]
    t = start
    while active is not None:
        t += dt.timedelta(minutes=1)
        active = active.update(t)
        if active is not None and active.group_index != seen[-1][0]:
            seen.append((active.group_index, t))
    indexes = [i for i, _ in seen]
    assert indexes == [0, 1]
    total = (t - start).total_seconds() // 60
    assert total == 10 * len(registry.cycles[0].groups)


def test_update_tolerates_tick_seconds(registry):
    start = at(MONDAY, "0610").replace(second=10)
    active = ActiveCycle.start(registry.cycles[0], start)
    assert active.elapsed_minutes(at(MONDAY, "0619").replace(second=59)) == 9
    assert active.update(at(MONDAY, "0620").replace(second=0)).group_index == 1


def test_failing_remote_irrigator_does_not_stop_sequencing(build_registry, http):
    http.set("http://valve", status_code=503)
    registry = build_registry({
        "irrigators": [{"id": 1, "type": "remote", "url": "http://valve"}] + log_irrigators(2),
        "cycles": [{"id": 1, "start": "0610", "days_of_week": [2], "duration": 2, "irrigators": [1, 2]}],
    })
    start = at(MONDAY, "0610")
    active = ActiveCycle.start(registry.cycles[0], start)
    assert registry.irrigators[1].is_on   # recorded as requested
    active = active.update(at(MONDAY, "0612"))
    assert active.group_index == 1
    assert registry.irrigators[2].is_on
    assert http.states("http://valve") == ["on", "off"]


def test_unreachable_humidity_sensor_uses_last_value(registry, http):
    http.set("http://hum-x", "95")
    first = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"))
    assert first.suppressed == {1}
    first.stop()

    del http.routes["http://hum-x"]
    again = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0710"))
    assert again.suppressed == {1}
    assert registry.humidity_sensors[1].last_reading.stale


def test_never_read_sensor_does_not_suppress(build_registry, http):
    registry = build_registry(SCENARIO)   # no route for hum-x at all
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"))
    assert active.suppressed == set()
    assert _on(registry) == [1]


def test_split_mode_shares_duration(build_registry, http):
    http.set("http://hum-x", "40")
    system = dict(SCENARIO, cycles=[dict(SCENARIO["cycles"][0], duration_mode="split")])
    registry = build_registry(system)
    start = at(MONDAY, "0610")
    active = ActiveCycle.start(registry.cycles[0], start)
    active = active.update(at(MONDAY, "0615"))
    assert active.group_index == 1
    assert active.update(at(MONDAY, "0620")) is None


def test_cycle_without_groups_does_not_start(build_registry):
    registry = build_registry({"cycles": [{"id": 1, "start": "0610", "days_of_week": [2], "duration": 5}]})
    assert ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610")) is None


def test_stop_turns_off_current_group(registry):
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"))
    active = active.update(at(MONDAY, "0620"))
    active.stop()
    assert _on(registry) == []


def test_as_dict(registry):
    active = ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"))
    assert active.as_dict() == {
        "cycle_id": 1,
        "group_index": 0,
        "group_count": 2,
        "group_activated_at": "2024-01-01T06:10:00",
        "irrigators": [1],
        "suppressed": [],
    }


def test_failed_activation_turns_group_back_off(build_registry, monkeypatch):
    registry = build_registry({
        "irrigators": log_irrigators(2, 3) + [{"id": 10, "irrigators": [2, 3]}],
        "cycles": [{"id": 1, "start": "0610", "days_of_week": [2], "duration": 5, "irrigators": [10]}],
    })

    def boom():
        raise RuntimeError("relay board gone")

    monkeypatch.setattr(registry.irrigators[3], "turn_on", boom)
    with pytest.raises(RuntimeError):
        ActiveCycle.start(registry.cycles[0], at(MONDAY, "0610"))
    assert _on(registry) == []
