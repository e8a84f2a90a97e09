"""
sampler.py - Reproducible growth-rate sampling

Growth rates drive the simulation: one rate is consumed per round. Runs must be
repeatable across processes and across language ports, so the random stream is
not Python's Mersenne Twister but a port of the ARC4-based ``seedrandom``
generator, which is fully specified by its seed string.

Classes:
- Sampler: Protocol for anything that yields growth rates
- ARC4Random: Seeded uniform [0, 1) stream
- UniformGrowthSampler: Uniform growth rates in a closed interval
- SequenceSampler: Replays a fixed list of rates
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Iterator, List, Protocol, runtime_checkable

from .core import (
    DEFAULT_GROWTH_MAX,
    DEFAULT_GROWTH_MIN,
    DEFAULT_SEED,
    GROWTH_RATE_QUANTUM,
    SamplerExhausted,
)


# ARC4 stream parameters (bytes are the unit of output).
_WIDTH = 256
_MASK = _WIDTH - 1
_CHUNKS = 6
_START_DENOM = float(_WIDTH ** _CHUNKS)
_SIGNIFICANCE = 2 ** 52
_OVERFLOW = 2 ** 53


@runtime_checkable
class Sampler(Protocol):
    """
    Protocol for growth-rate sources.

    Each call to next() advances the source exactly once. Implementations are
    not required to be safe for concurrent use.
    """

    def next(self) -> Decimal:
        """Return the next growth rate."""
        ...


def _code_units(seed: str) -> List[int]:
    """Split a string into UTF-16 code units (the units the key schedule mixes)."""
    raw = seed.encode("utf-16-le")
    return [int.from_bytes(raw[i:i + 2], "little") for i in range(0, len(raw), 2)]


def _mix_key(seed: str) -> List[int]:
    """Derive the ARC4 key bytes from a seed string."""
    key: List[int] = []
    smear = 0
    for j, code in enumerate(_code_units(seed)):
        slot = j & _MASK
        current = key[slot] if slot < len(key) else 0
        smear ^= current * 19
        value = _MASK & (smear + code)
        if slot < len(key):
            key[slot] = value
        else:
            key.append(value)
    return key


class ARC4Random:
    """
    Seeded uniform random stream in [0, 1).

    Bit-compatible with ``seedrandom(seed)``: the key schedule runs over the
    seed's UTF-16 code units, the first 256 keystream bytes are discarded, and
    each draw assembles a 52-bit mantissa from keystream bytes.

    Example:
        rng = ARC4Random("hello.")
        rng.random()   # 0.9282578795792454
    """

    def __init__(self, seed: str):
        key = _mix_key(seed) or [0]
        s = list(range(_WIDTH))
        j = 0
        for i in range(_WIDTH):
            t = s[i]
            j = _MASK & (j + key[i % len(key)] + t)
            s[i] = s[j]
            s[j] = t
        self._s = s
        self._i = 0
        self._j = 0
        self.seed = seed
        self._bytes(_WIDTH)

    def _bytes(self, count: int) -> int:
        """Consume count keystream bytes and return them as a big-endian integer."""
        s, i, j = self._s, self._i, self._j
        r = 0
        for _ in range(count):
            i = _MASK & (i + 1)
            t = s[i]
            j = _MASK & (j + t)
            s[i] = s[j]
            s[j] = t
            r = r * _WIDTH + s[_MASK & (s[i] + t)]
        self._i, self._j = i, j
        return r

    def random(self) -> float:
        """Return the next float in [0, 1)."""
        n = self._bytes(_CHUNKS)
        d = _START_DENOM
        x = 0
        while n < _SIGNIFICANCE:
            n = (n + x) * _WIDTH
            d *= _WIDTH
            x = self._bytes(1)
        while n >= _OVERFLOW:
            n //= 2
            d /= 2
            x >>= 1
        return (float(n) + x) / d


def quantize_growth_rate(value: float) -> Decimal:
    """
    Round a raw float draw to the growth-rate precision.

    Uses the exact binary value of the float and rounds half away from zero,
    so the result matches a fixed-point rendering of the same double.
    """
    return Decimal(value).quantize(GROWTH_RATE_QUANTUM, rounding=ROUND_HALF_UP)


class UniformGrowthSampler:
    """
    Uniformly distributed growth rates in [min_rate, max_rate].

    Rates are Decimals with five fractional digits, clipped to the interval.
    Identical seeds give identical sequences.

    Example:
        sampler = UniformGrowthSampler(seed="fragments.org")
        g1 = sampler.next()
        g2 = sampler.next()
    """

    def __init__(
        self,
        seed: str = DEFAULT_SEED,
        min_rate: Decimal = DEFAULT_GROWTH_MIN,
        max_rate: Decimal = DEFAULT_GROWTH_MAX,
    ):
        """
        Initialize the sampler.

        Args:
            seed: Seed string for the random stream
            min_rate: Lower bound of the interval (inclusive)
            max_rate: Upper bound of the interval (inclusive)

        Raises:
            ValueError: If min_rate > max_rate or min_rate < -1
        """
        min_rate = Decimal(min_rate)
        max_rate = Decimal(max_rate)
        if min_rate > max_rate:
            raise ValueError(f"min_rate {min_rate} exceeds max_rate {max_rate}")
        if min_rate < Decimal("-1"):
            raise ValueError(f"min_rate {min_rate} would make the supply negative")
        self.seed = seed
        self.min_rate = min_rate
        self.max_rate = max_rate
        self._rng = ARC4Random(seed)
        self.draws = 0

    def next(self) -> Decimal:
        """Return the next growth rate."""
        lo = float(self.min_rate)
        hi = float(self.max_rate)
        raw = lo + (hi - lo) * self._rng.random()
        self.draws += 1
        rate = quantize_growth_rate(raw)
        return min(max(rate, self.min_rate), self.max_rate)

    def take(self, n: int) -> List[Decimal]:
        """Return the next n growth rates."""
        return [self.next() for _ in range(n)]

    def __iter__(self) -> Iterator[Decimal]:
        while True:
            yield self.next()

    def __repr__(self) -> str:
        return f"UniformGrowthSampler(seed={self.seed!r}, [{self.min_rate}, {self.max_rate}], draws={self.draws})"


class SequenceSampler:
    """
    Replays a fixed sequence of growth rates.

    Useful for pinning a simulation to a hand-picked path.

    Raises:
        SamplerExhausted: From next() once the sequence is exhausted
    """

    def __init__(self, rates: Iterable[Decimal]):
        self.rates = [Decimal(r) for r in rates]
        self._pos = 0

    def next(self) -> Decimal:
        if self._pos >= len(self.rates):
            raise SamplerExhausted(f"growth-rate sequence exhausted after {len(self.rates)} rates")
        rate = self.rates[self._pos]
        self._pos += 1
        return rate

    def __repr__(self) -> str:
        return f"SequenceSampler({self._pos}/{len(self.rates)} consumed)"
