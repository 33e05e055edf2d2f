# weather_override.py
"""
Rain / soil-humidity override for scheduled watering.

This module DOES NOT read any sensor by itself. The active cycle reads the
sensors and hands the values in; `decide_override(...)` only decides.

Inputs:
    raining        True / False, or None when there is no rain sensor or it
                   has never answered
    humidity_pct   last soil humidity of the irrigator's sensor (0-100), or
                   None when the irrigator has no sensor / no value yet
    stale          True when any of the values above is a fallback after a
                   failed read

Return value example:
{
    "action": "skip" | "normal",
    "reason": "human-readable reason",
    "details": {...}
}

Stale values are trusted like fresh ones; a missing value never causes a skip.
"""

from typing import Any, Dict, Optional

DEFAULT_CONFIG = {
    "wet_threshold_pct": 80.0,   # soil humidity >= this -> skip
}


def decide_override(raining: Optional[bool], humidity_pct: Optional[float],
                    config: Dict[str, Any] = None, stale: bool = False) -> Dict[str, Any]:
    cfg = dict(DEFAULT_CONFIG)
    if config:
        cfg.update(config)
    threshold = float(cfg["wet_threshold_pct"])

    decision = {
        "action": "normal",
        "reason": "Conditions normal.",
        "details": {
            "raining": raining,
            "humidity_pct": humidity_pct,
            "wet_threshold_pct": threshold,
            "stale": stale,
        },
    }
    suffix = " (last known value, sensor unreachable)" if stale else ""

    # 1) Rain beats everything
    if raining:
        decision.update({"action": "skip", "reason": "Rain sensor reports rain, skipping." + suffix})
        return decision

    # 2) Soil already wet enough
    if humidity_pct is not None and humidity_pct >= threshold:
        decision.update({
            "action": "skip",
            "reason": f"Soil humidity {humidity_pct:.0f}% >= {threshold:.0f}%, skipping." + suffix,
        })
        return decision

    return decision


def should_skip(decision: Dict[str, Any]) -> bool:
    return decision.get("action") == "skip"
