"""Stock market model driving the sensor values between instructions."""

from __future__ import annotations
import random
from typing import Dict, Mapping, Optional, Protocol

from memory import I32_MAX, clamp_i32, trunc_div


DRIFT_MIN = -5
DRIFT_MAX = 5
NEUTRAL_REPUTATION = 50
PASSIVE_INCOME = 100

INITIAL_SENSORS: Dict[str, int] = {
    "SHARES": 1000,
    "STOCKPRICE": 200,
    "REPUTATION": NEUTRAL_REPUTATION,
    "MARKETVAL": 1000 * 200,
    "EQUITY": 0,
    "OWNED": 0,
    "BALANCE": 10000,
}


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int:
        """Return an integer drawn uniformly from [a, b], both inclusive."""
        ...


def make_random_source(seed: Optional[int] = None) -> RandomSource:
    return random.Random(seed)


def initial_sensors(overrides: Optional[Mapping[str, int]] = None) -> Dict[str, int]:
    sensors = dict(INITIAL_SENSORS)
    if overrides:
        for name, value in overrides.items():
            if name not in sensors:
                raise KeyError(f"Unknown sensor '{name}'")
            sensors[name] = clamp_i32(int(value))
    return sensors


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def simulate(sensors: Mapping[str, int], rng: RandomSource) -> Dict[str, int]:
    """Compute the sensor values after one market tick.

    Reputation and stock price each take a uniform drift in [-5, 5]; the
    price never goes below zero. The drift of the outstanding shares grows
    with the square of ``bias``, which truncates toward zero. Owned shares
    act as a floor for the share count and the balance earns a flat income.
    """
    owned = sensors["OWNED"]
    shares = sensors["SHARES"]

    reputation = clamp_i32(sensors["REPUTATION"] + rng.randint(DRIFT_MIN, DRIFT_MAX))
    stockprice = clamp_i32(max(0, sensors["STOCKPRICE"] + rng.randint(DRIFT_MIN, DRIFT_MAX)))

    bias = trunc_div((reputation - NEUTRAL_REPUTATION) * stockprice, 10)
    factor = _sign(bias) * bias * bias
    delta = factor * (shares - owned)
    new_shares = min(I32_MAX, max(owned, shares + delta))

    return {
        "SHARES": new_shares,
        "STOCKPRICE": stockprice,
        "REPUTATION": reputation,
        "MARKETVAL": clamp_i32(new_shares * stockprice),
        "EQUITY": clamp_i32(owned * stockprice),
        "OWNED": owned,
        "BALANCE": clamp_i32(sensors["BALANCE"] + PASSIVE_INCOME),
    }
