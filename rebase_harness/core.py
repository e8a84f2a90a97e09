"""
Core types, constants and protocols for the rebase verification harness.

This module provides the foundational pieces shared by every other module:
1. Constants: numeric limits of the ledger under test and harness defaults
2. Immutable records: OperationReceipt, RebaseRecord, RoundResult
3. Exceptions: HarnessError and the failure taxonomy of a run
4. Protocols: LedgerClient (the only way the harness touches a ledger)
5. Pure functions: rebase_amount and growth-rate scaling

All functions in this module are pure. Ledger state lives behind a LedgerClient;
the harness only reads balances and supply through it, never stores them.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

MAX_UINT256 = 2 ** 256 - 1
MAX_UINT128 = 2 ** 128 - 1

# Largest total supply the ledger tolerates. The simulation stops once the
# next projected rebase would reach it.
MAX_SUPPLY = MAX_UINT128

# Growth rates are carried with a fixed number of fractional digits so that
# the rebase delta can be computed in integer space.
GROWTH_RATE_PLACES = 5
GROWTH_RATE_SCALE = 10 ** GROWTH_RATE_PLACES
GROWTH_RATE_QUANTUM = Decimal(1).scaleb(-GROWTH_RATE_PLACES)

DEFAULT_GROWTH_MIN = Decimal("-0.5")
DEFAULT_GROWTH_MAX = Decimal("2.5")
DEFAULT_SEED = "fragments.org"

DEFAULT_INITIAL_SUPPLY = 50_000_000
DEFAULT_MAX_ROUNDS = 10_000

DEFAULT_LEDGER_NAME = "xBTC"
DEFAULT_LEDGER_SYMBOL = "xBTC"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque account identity (an address).
Account = str

# Opaque handle to a deployed ledger (its address).
LedgerHandle = str


# ============================================================================
# ENUMS
# ============================================================================

class SimulationState(Enum):
    """
    State of a simulation run.

    RUNNING: Rounds are still being driven.
    VIOLATED: A check failed or the ledger rejected a call. Terminal.
    COMPLETE: The supply reached the configured bound. Terminal.
    """
    RUNNING = "running"
    VIOLATED = "violated"
    COMPLETE = "complete"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class HarnessError(Exception):
    """Base exception for all harness errors."""
    pass


class LedgerClientError(HarnessError):
    """
    A ledger call did not complete.

    Attributes:
        operation: Name of the ledger operation (e.g. "transfer")
        call_args: Arguments the operation was invoked with
    """

    def __init__(self, message: str, operation: str = "", call_args: Tuple[Any, ...] = ()):
        super().__init__(message)
        self.operation = operation
        self.call_args = tuple(call_args)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.operation:
            return base
        args = ", ".join(str(a) for a in self.call_args)
        return f"{self.operation}({args}): {base}"


class CommunicationFailure(LedgerClientError):
    """The transport to the ledger failed. Never retried: the call may have landed."""
    pass


class RevertFailure(LedgerClientError):
    """The ledger rejected the operation (e.g. insufficient balance)."""
    pass


class AuthorizationFailure(RevertFailure):
    """The caller is not allowed to invoke the operation (e.g. rebase by a non-policy account)."""
    pass


class InvariantViolation(HarnessError):
    """
    A conservation or exactness check failed.

    Always fatal to the run. The driver attaches the epoch of the failing round.

    Attributes:
        operation: Human-readable description of the checked operation
        expected: Value the invariant requires
        actual: Value observed on the ledger
        epoch: Rebase epoch of the round in which the check ran (if known)
    """

    def __init__(self, operation: str, expected: int, actual: int, epoch: Optional[int] = None):
        super().__init__(operation, expected, actual)
        self.operation = operation
        self.expected = expected
        self.actual = actual
        self.epoch = epoch

    def __str__(self) -> str:
        where = f"epoch {self.epoch}: " if self.epoch is not None else ""
        return (
            f"{where}{self.operation}: expected {self.expected}, got {self.actual} "
            f"(error {self.actual - self.expected:+d})"
        )


class RoundCapExceeded(HarnessError):
    """The simulation ran for more rounds than the configured cap without reaching the bound."""
    pass


class SamplerExhausted(HarnessError):
    """A finite growth-rate source ran out before the simulation finished."""
    pass


class ExternalRateLookupFailure(HarnessError):
    """An auxiliary price lookup failed. Recovered by the caller with a fallback rate."""
    pass


class CostDriftFailure(HarnessError):
    """
    A measured operation cost differs from the recorded baseline.

    Attributes:
        label: Operation label whose cost drifted
        baseline: Recorded cost (None if the label is missing from the baseline)
        measured: Freshly measured cost
    """

    def __init__(self, label: str, baseline: Optional[int], measured: int):
        super().__init__(f"Gas utilization changed significantly for fn {label}")
        self.label = label
        self.baseline = baseline
        self.measured = measured


# ============================================================================
# IMMUTABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class OperationReceipt:
    """
    Result of a state-mutating ledger call.

    Attributes:
        operation: Name of the ledger operation
        tx_hash: Transaction identifier assigned by the ledger
        gas_used: Computational cost charged for the call
        status: True if the call succeeded (failed calls raise instead)
    """
    operation: str
    tx_hash: str
    gas_used: int
    status: bool = True


@dataclass(frozen=True, slots=True)
class RebaseRecord:
    """
    One applied rebase.

    Attributes:
        epoch: Rebase epoch (strictly increasing within a run)
        supply_delta: Signed change requested for the total supply
        total_supply: Total supply after the rebase
    """
    epoch: int
    supply_delta: int
    total_supply: int


@dataclass(frozen=True, slots=True)
class RoundResult:
    """
    Summary of one completed simulation round.

    Attributes:
        epoch: Epoch used for the round's rebase
        growth_rate: Sampled growth rate
        supply_delta: Rebase delta derived from the growth rate
        total_supply: Total supply read back after the round's checks
    """
    epoch: int
    growth_rate: Decimal
    supply_delta: int
    total_supply: int

    def __repr__(self) -> str:
        return f"Round(epoch={self.epoch}, g={self.growth_rate}, delta={self.supply_delta:+d}, supply={self.total_supply})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerClient(Protocol):
    """
    Call surface of an external rebasing ledger.

    Every method is a blocking call from the harness's point of view. Mutating
    calls return an OperationReceipt or raise a LedgerClientError subclass:
    RevertFailure when the ledger rejects the call, CommunicationFailure when the
    call could not be completed. The harness never issues two calls concurrently.

    All amounts are Python ints; floats never cross this boundary.
    """

    def accounts(self) -> List[Account]:
        """Return the provisioned account identities (at least two)."""
        ...

    def deploy_ledger(self, initial_admin: Account, name: str, symbol: str) -> LedgerHandle:
        """Deploy and initialize a ledger owned by initial_admin."""
        ...

    def set_monetary_policy(self, handle: LedgerHandle, admin: Account) -> OperationReceipt:
        """Authorize admin to call rebase."""
        ...

    def rebase(self, handle: LedgerHandle, epoch: int, supply_delta: int, sender: Account) -> OperationReceipt:
        """Adjust total supply by supply_delta, scaling every balance proportionally."""
        ...

    def transfer(self, handle: LedgerHandle, sender: Account, to: Account, amount: int) -> OperationReceipt:
        """Move amount from sender to to."""
        ...

    def approve(self, handle: LedgerHandle, owner: Account, spender: Account, amount: int) -> OperationReceipt:
        """Allow spender to move up to amount of owner's balance."""
        ...

    def transfer_from(
        self, handle: LedgerHandle, spender: Account, owner: Account, to: Account, amount: int
    ) -> OperationReceipt:
        """Move amount from owner to to, spending spender's allowance."""
        ...

    def allowance(self, handle: LedgerHandle, owner: Account, spender: Account) -> int:
        """Return the remaining allowance of spender over owner's balance."""
        ...

    def balance_of(self, handle: LedgerHandle, account: Account) -> int:
        """Return the external balance of account."""
        ...

    def total_supply(self, handle: LedgerHandle) -> int:
        """Return the ledger's total supply."""
        ...

    def snapshot(self) -> Any:
        """Capture the full ledger state; returns an id accepted by revert()."""
        ...

    def revert(self, snapshot_id: Any) -> None:
        """Restore the state captured by snapshot()."""
        ...


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def scaled_growth_rate(growth_rate: Decimal) -> int:
    """
    Express a growth rate as an integer count of GROWTH_RATE_QUANTUM.

    Raises:
        ValueError: If the rate carries more than GROWTH_RATE_PLACES fractional digits
    """
    scaled = growth_rate.scaleb(GROWTH_RATE_PLACES)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Growth rate {growth_rate} has more than {GROWTH_RATE_PLACES} fractional digits"
        )
    return int(scaled)


def rebase_amount(supply: int, growth_rate: Decimal) -> int:
    """
    Compute the signed rebase delta floor(supply * growth_rate).

    The product is taken in integer space so the rounding matches the
    ledger's own integer math exactly, for any supply magnitude.

    Args:
        supply: Current total supply (non-negative)
        growth_rate: Fractional growth with at most GROWTH_RATE_PLACES digits

    Returns:
        Signed supply delta, rounded toward negative infinity

    Example:
        rebase_amount(50_000_000, Decimal("0.12345"))   # 6172500
        rebase_amount(3, Decimal("-0.5"))               # -2
    """
    if supply < 0:
        raise ValueError(f"Supply cannot be negative, got {supply}")
    return (supply * scaled_growth_rate(growth_rate)) // GROWTH_RATE_SCALE
