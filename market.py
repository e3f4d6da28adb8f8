"""One year of correlated market returns and inflation."""

from __future__ import annotations

import math
from dataclasses import dataclass

from numba import njit

from core import (
    P_INFLATION_MEAN,
    P_INFLATION_VOL,
    P_ISA_RETURN_MEAN,
    P_ISA_RETURN_VOL,
    P_PENSION_RETURN_MEAN,
    P_PENSION_RETURN_VOL,
    P_RETURN_CORRELATION,
    P_TAXABLE_RETURN_MEAN,
    P_TAXABLE_RETURN_VOL,
    inputs_to_params,
)
from rng import RandomStream


RETURN_FLOOR = -0.95
RETURN_CAP = 2.5
INFLATION_FLOOR = -0.03
INFLATION_CAP = 0.20

# standard normals drawn per simulated year
NORMALS_PER_YEAR = 3


@dataclass(frozen=True)
class MarketSample:
    isa_return: float
    taxable_return: float
    pension_return: float
    inflation: float


@njit(cache=True)
def _clamp(value, low, high):
    return min(max(value, low), high)


@njit(cache=True)
def _sample_market_jit(params, z1, z2, z3):
    """Returns (isa, taxable, pension, inflation) for three independent normals."""
    corr = params[P_RETURN_CORRELATION]
    orth = math.sqrt(max(1.0 - corr * corr, 0.0))

    isa_return = params[P_ISA_RETURN_MEAN] + params[P_ISA_RETURN_VOL] * z1
    taxable_return = params[P_TAXABLE_RETURN_MEAN] + params[P_TAXABLE_RETURN_VOL] * z1
    pension_return = params[P_PENSION_RETURN_MEAN] + params[P_PENSION_RETURN_VOL] * (
        corr * z1 + orth * z2
    )
    inflation = params[P_INFLATION_MEAN] + params[P_INFLATION_VOL] * z3

    return (
        _clamp(isa_return, RETURN_FLOOR, RETURN_CAP),
        _clamp(taxable_return, RETURN_FLOOR, RETURN_CAP),
        _clamp(pension_return, RETURN_FLOOR, RETURN_CAP),
        _clamp(inflation, INFLATION_FLOOR, INFLATION_CAP),
    )


def sample_market(inputs, rng: RandomStream) -> MarketSample:
    """Draw the year's returns from three independent normals.

    ISA and taxable returns share the first factor; the pension return mixes
    it with the second according to ``return_correlation``; inflation uses the
    third.
    """
    z1, z2, z3 = rng.standard_normals(NORMALS_PER_YEAR)
    sampled = _sample_market_jit(inputs_to_params(inputs), z1, z2, z3)
    return MarketSample(*(float(v) for v in sampled))
