"""
analysis.py - Termination analysis for the rebase simulation

The simulation stops when supply reaches the configured bound. Because growth
rates may be negative, that is only guaranteed in expectation: log-supply
performs a random walk whose drift per round is

    mu = E[ln(1 + g)],  g ~ Uniform[growth_min, growth_max]

and the expected number of rounds to climb from the initial supply to the
bound is roughly ln(max_supply / initial_supply) / mu. The round cap of a run
should sit well above that figure.

Also summarizes the sampled growth rates of a finished run.
"""

from __future__ import annotations
import math
from decimal import Decimal
from typing import Dict, Sequence

import numpy as np
from scipy import integrate

from .core import RoundResult


def expected_log_growth(growth_min: Decimal, growth_max: Decimal) -> float:
    """
    Expected per-round drift of ln(supply) under uniform growth rates.

    Args:
        growth_min: Lower bound (must be > -1)
        growth_max: Upper bound

    Returns:
        E[ln(1 + g)] for g uniform on [growth_min, growth_max]

    Raises:
        ValueError: If growth_min <= -1 (ln undefined) or the interval is inverted
    """
    lo, hi = float(growth_min), float(growth_max)
    if lo <= -1.0:
        raise ValueError(f"growth_min must exceed -1, got {growth_min}")
    if lo > hi:
        raise ValueError(f"growth_min {growth_min} exceeds growth_max {growth_max}")
    if lo == hi:
        return math.log1p(lo)
    value, _ = integrate.quad(np.log1p, lo, hi)
    return value / (hi - lo)


def expected_rounds(
    initial_supply: int,
    max_supply: int,
    growth_min: Decimal,
    growth_max: Decimal,
) -> float:
    """
    Expected number of rounds for supply to climb from initial_supply to max_supply.

    Returns:
        Rounds in expectation, or math.inf when the drift is not positive
    """
    if initial_supply <= 0:
        raise ValueError("initial_supply must be positive")
    if initial_supply >= max_supply:
        return 0.0
    mu = expected_log_growth(growth_min, growth_max)
    if mu <= 0:
        return math.inf
    return (math.log(max_supply) - math.log(initial_supply)) / mu


def summarize_rounds(rounds: Sequence[RoundResult]) -> Dict[str, float]:
    """
    Summary statistics of a run's sampled growth rates and realized log growth.

    Returns:
        Dict with keys: rounds, mean_growth, min_growth, max_growth, std_growth,
        mean_log_growth, contractions
    """
    if not rounds:
        return {
            "rounds": 0,
            "mean_growth": 0.0,
            "min_growth": 0.0,
            "max_growth": 0.0,
            "std_growth": 0.0,
            "mean_log_growth": 0.0,
            "contractions": 0,
        }
    rates = np.array([float(r.growth_rate) for r in rounds])
    return {
        "rounds": len(rounds),
        "mean_growth": float(rates.mean()),
        "min_growth": float(rates.min()),
        "max_growth": float(rates.max()),
        "std_growth": float(rates.std()),
        "mean_log_growth": float(np.log1p(rates).mean()),
        "contractions": int((rates < 0).sum()),
    }
