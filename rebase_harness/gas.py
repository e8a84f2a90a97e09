"""
gas.py - Operation cost regression

Measures the gas used by a fixed set of ledger operations and compares it with
a baseline persisted as YAML (label -> integer gas).

    save    Measure and write the baseline
    verify  Measure and compare against the baseline; any drift is fatal

Every measurement runs in a clean room: the ledger state is snapshotted before
the operation and reverted after it, so measurements do not depend on order.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import yaml

from .core import (
    Account,
    LedgerClient,
    LedgerHandle,
    OperationReceipt,
    CostDriftFailure,
    DEFAULT_LEDGER_NAME,
    DEFAULT_LEDGER_SYMBOL,
)
from .pricing import PricingSource, DEFAULT_FALLBACK_RATE, DEFAULT_RATE_URL


DEFAULT_BASELINE_PATH = Path("logs") / "gas-utilization.yaml"

# 20 gwei.
DEFAULT_GAS_PRICE_WEI = 20_000_000_000

WEI_PER_ETHER = Decimal(10) ** 18

GasMapping = Dict[str, int]


@dataclass(frozen=True)
class GasConfig:
    """
    Configuration of a cost regression run.

    Attributes:
        gas_price_wei: Gas price used to value measurements
        baseline_path: YAML file holding the baseline
        native_symbol: Symbol of the currency gas is paid in
        rate_url: Price endpoint for the native/fiat rate
        fallback_rate: Rate used when the lookup fails
        tolerance: Largest accepted absolute drift per label (0 = any drift fails)
        verbose: Print per-operation measurements
    """
    gas_price_wei: int = DEFAULT_GAS_PRICE_WEI
    baseline_path: Path = DEFAULT_BASELINE_PATH
    native_symbol: str = "ETH"
    rate_url: str = DEFAULT_RATE_URL
    fallback_rate: Decimal = DEFAULT_FALLBACK_RATE
    tolerance: int = 0
    verbose: bool = True

    def __post_init__(self):
        if self.gas_price_wei < 0:
            raise ValueError("gas_price_wei cannot be negative")
        if self.tolerance < 0:
            raise ValueError("tolerance cannot be negative")


def load_baseline(path: Union[str, Path]) -> GasMapping:
    """Read a label -> gas mapping from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Baseline {path} is not a mapping")
    return {str(k): int(v) for k, v in data.items()}


def save_baseline(mapping: GasMapping, path: Union[str, Path]) -> Path:
    """Write a label -> gas mapping to a YAML file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(dict(mapping), f, default_flow_style=False, sort_keys=False)
    return path


def compare_gas(measured: GasMapping, baseline: GasMapping, tolerance: int = 0) -> List[CostDriftFailure]:
    """
    Compare measured costs with a baseline.

    Every measured label must be in the baseline with a difference no larger
    than tolerance. Labels only present in the baseline are ignored.

    Returns:
        One CostDriftFailure per offending label, in measurement order
    """
    failures = []
    for label, gas in measured.items():
        recorded = baseline.get(label)
        if recorded is None or abs(gas - recorded) > tolerance:
            failures.append(CostDriftFailure(label, recorded, gas))
    return failures


def verify_gas(measured: GasMapping, baseline: GasMapping, tolerance: int = 0) -> None:
    """
    Raise for the first label whose cost drifted.

    Raises:
        CostDriftFailure: Naming the first drifted label
    """
    failures = compare_gas(measured, baseline, tolerance)
    if failures:
        raise failures[0]


class CostRegressionHarness:
    """
    Measures ledger operation costs.

    Example:
        harness = CostRegressionHarness(client, pricing)
        harness.compute()
        harness.save()
        harness.verify()
    """

    def __init__(
        self,
        client: LedgerClient,
        pricing: PricingSource,
        config: Optional[GasConfig] = None,
    ):
        self.client = client
        self.pricing = pricing
        self.config = config or GasConfig()
        self.verbose = self.config.verbose
        self.measured: GasMapping = {}
        self._rate: Optional[Decimal] = None

    # ========================================================================
    # VALUATION
    # ========================================================================

    @property
    def native_rate(self) -> Decimal:
        """Native/fiat rate, looked up once per harness."""
        if self._rate is None:
            self._rate = self.pricing.get_rate(self.config.native_symbol)
        return self._rate

    def native_value(self, gas_used: int) -> Decimal:
        """Cost of gas_used in the native currency."""
        return Decimal(self.config.gas_price_wei) * gas_used / WEI_PER_ETHER

    def fiat_value(self, gas_used: int) -> Decimal:
        """Cost of gas_used in the quote currency of the pricing source."""
        return self.native_value(gas_used) * self.native_rate

    # ========================================================================
    # MEASUREMENT
    # ========================================================================

    def clean_room(self, label: str, fn: Callable[[], OperationReceipt]) -> int:
        """
        Run fn between a snapshot and a revert and record the gas of its receipt.

        Args:
            label: Operation label for the baseline
            fn: Performs the operation; returns the receipt to measure

        Returns:
            Gas used
        """
        if self.verbose:
            print(f"- {label}")
        snapshot_id = self.client.snapshot()
        try:
            receipt = fn()
        finally:
            self.client.revert(snapshot_id)
        self._record(label, receipt)
        return receipt.gas_used

    def _record(self, label: str, receipt: OperationReceipt) -> None:
        gas = receipt.gas_used
        if self.verbose:
            symbol = self.config.native_symbol
            quote = self.pricing.quote_currency
            print(f"\t=Gas Used: {gas}")
            print(f"\t={symbol} value: {self.native_value(gas)}")
            print(f"\t={quote} value: {self.fiat_value(gas)}")
        self.measured[label] = gas

    def compute(self) -> GasMapping:
        """
        Measure the standard operation set on a freshly deployed ledger.

        Returns:
            Mapping of operation label to gas used
        """
        accounts = self.client.accounts()
        if len(accounts) < 2:
            raise ValueError(f"Cost measurement needs two accounts, got {len(accounts)}")
        deployer, user = accounts[0], accounts[1]
        handle = self.client.deploy_ledger(deployer, DEFAULT_LEDGER_NAME, DEFAULT_LEDGER_SYMBOL)

        if self.verbose:
            print(f"GasPrice (WEI): {self.config.gas_price_wei}")
            print(f"{self.pricing.quote_currency} to {self.config.native_symbol}: {self.native_rate}")
            print("-----------------------------------------------------")
            print("LEDGER CONTRACT FUNCTIONS")
            print("-----------------------------------------------------")

        self._measure_operations(handle, deployer, user)
        return dict(self.measured)

    def _measure_operations(self, handle: LedgerHandle, deployer: Account, user: Account) -> None:
        client = self.client

        self.clean_room(
            "Ledger:transfer(user, 10)",
            lambda: client.transfer(handle, deployer, user, 10),
        )

        def approve_and_transfer_from():
            client.approve(handle, deployer, user, 10)
            return client.transfer_from(handle, user, deployer, user, 10)

        self.clean_room("Ledger:approve and transferFrom(user, 10)", approve_and_transfer_from)

        def policy_and_rebase():
            client.set_monetary_policy(handle, deployer)
            return client.rebase(handle, 1, 100, deployer)

        self.clean_room("Ledger:rebase(1, +100)", policy_and_rebase)

    # ========================================================================
    # BASELINE
    # ========================================================================

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the measured mapping as the new baseline."""
        path = save_baseline(self.measured, path or self.config.baseline_path)
        if self.verbose:
            print(f"Saved gas utilization information to {path}")
        return path

    def verify(self, path: Optional[Union[str, Path]] = None) -> None:
        """
        Compare the measured mapping with the baseline.

        Raises:
            CostDriftFailure: If any measured label drifted beyond the tolerance
            FileNotFoundError: If the baseline does not exist
        """
        baseline = load_baseline(path or self.config.baseline_path)
        verify_gas(self.measured, baseline, self.config.tolerance)
        if self.verbose:
            print("NO SIGNIFICANT CHANGE in gas utilization")
