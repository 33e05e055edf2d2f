from weather_override import decide_override, should_skip


def test_normal_when_dry_and_no_rain():
    d = decide_override(False, 30.0, {"wet_threshold_pct": 80})
    assert d["action"] == "normal"
    assert not should_skip(d)


def test_rain_skips_regardless_of_humidity():
    d = decide_override(True, 5.0)
    assert should_skip(d)
    assert "Rain" in d["reason"]


def test_wet_soil_skips_at_threshold():
    assert should_skip(decide_override(False, 80.0, {"wet_threshold_pct": 80}))
    assert not should_skip(decide_override(False, 79.9, {"wet_threshold_pct": 80}))


def test_missing_values_never_skip():
    assert not should_skip(decide_override(None, None))


def test_stale_is_mentioned():
    d = decide_override(None, 95.0, stale=True)
    assert should_skip(d)
    assert "last known value" in d["reason"]
    assert d["details"]["stale"] is True
