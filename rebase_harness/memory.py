"""
memory.py - In-memory rebasing ledger

A stand-in for the deployed ledger that implements the same integer arithmetic,
so the simulation driver and invariant checker can be exercised without a node.

Balances are held internally in "gons", a fixed-size denomination. The total
number of gons never changes; a rebase only changes how many gons make up one
external unit (gons_per_fragment). External balances are gons divided by that
factor, and a transfer moves amount * gons_per_fragment gons, so transfers are
exact while rebases scale every holder proportionally.

Classes:
- FragmentsLedger: One ledger instance (supply, gon balances, allowances, policy)
- InMemoryLedgerClient: LedgerClient implementation over FragmentsLedger instances
"""

from __future__ import annotations
import copy
import hashlib
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

from .core import (
    Account,
    LedgerHandle,
    OperationReceipt,
    RebaseRecord,
    MAX_UINT256,
    MAX_SUPPLY,
    DEFAULT_INITIAL_SUPPLY,
    LedgerClientError,
    RevertFailure,
    AuthorizationFailure,
)


# ============================================================================
# GAS SCHEDULE
# ============================================================================
#
# A deterministic cost model so that cost regression runs offline. Each call
# is charged a base fee plus a fee per storage slot read and written; writing
# a slot from zero to non-zero costs more than overwriting a non-zero slot.
#
GAS_TX_BASE = 21000
GAS_CALLDATA_WORD = 68
GAS_SLOAD = 800
GAS_SSTORE_SET = 20000
GAS_SSTORE_RESET = 5000
GAS_LOG = 1125

ZERO_ADDRESS = "0x" + "0" * 40


def _address(label: str) -> str:
    """Derive a stable 20-byte hex address from a label."""
    return "0x" + hashlib.sha256(label.encode()).hexdigest()[:40]


class _GasMeter:
    """Accumulates the cost of a single call."""

    def __init__(self, calldata_words: int):
        self.used = GAS_TX_BASE + GAS_CALLDATA_WORD * calldata_words

    def read(self, slots: int = 1) -> None:
        self.used += GAS_SLOAD * slots

    def write(self, old: int, new: int) -> None:
        self.used += GAS_SSTORE_SET if old == 0 and new != 0 else GAS_SSTORE_RESET

    def log(self) -> None:
        self.used += GAS_LOG


class FragmentsLedger:
    """
    In-memory rebasing ledger.

    The whole initial supply is credited to the owner at construction. Only the
    monetary policy account may rebase; only the owner may set the policy.

    Attributes:
        address: Ledger handle
        owner: Account that initialized the ledger
        name: Display name
        symbol: Ticker symbol
        total_gons: Fixed number of gons backing the supply
        rebases: Applied rebases, in call order

    Example:
        ledger = FragmentsLedger("0xabc", owner="alice", name="xBTC", symbol="xBTC")
        ledger.set_monetary_policy("alice", "alice")
        ledger.rebase("alice", 1, 1000)
        ledger.transfer("alice", "bob", 10)
    """

    def __init__(
        self,
        address: LedgerHandle,
        owner: Account,
        name: str,
        symbol: str,
        initial_supply: int = DEFAULT_INITIAL_SUPPLY,
        max_supply: int = MAX_SUPPLY,
    ):
        if initial_supply <= 0:
            raise ValueError(f"initial_supply must be positive, got {initial_supply}")
        if initial_supply > max_supply:
            raise ValueError(f"initial_supply {initial_supply} exceeds max_supply {max_supply}")
        self.address = address
        self.owner = owner
        self.name = name
        self.symbol = symbol
        self.max_supply = max_supply
        self.monetary_policy: Optional[Account] = None
        # Largest multiple of the initial supply that fits in 256 bits, so the
        # initial gons_per_fragment is an exact integer.
        self.total_gons = MAX_UINT256 - (MAX_UINT256 % initial_supply)
        self._total_supply = initial_supply
        self._gons_per_fragment = self.total_gons // initial_supply
        self._gon_balances: Dict[Account, int] = defaultdict(int)
        self._gon_balances[owner] = self.total_gons
        self._allowances: Dict[Tuple[Account, Account], int] = defaultdict(int)
        self.rebases: List[RebaseRecord] = []

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def total_supply(self) -> int:
        return self._total_supply

    @property
    def gons_per_fragment(self) -> int:
        return self._gons_per_fragment

    def balance_of(self, account: Account) -> int:
        """External balance: the account's gons divided by the current gons_per_fragment."""
        return self._gon_balances.get(account, 0) // self._gons_per_fragment

    def gon_balance_of(self, account: Account) -> int:
        return self._gon_balances.get(account, 0)

    def allowance(self, owner: Account, spender: Account) -> int:
        return self._allowances.get((owner, spender), 0)

    def holders(self) -> Set[Account]:
        """Accounts holding a non-zero gon balance."""
        return {a for a, g in self._gon_balances.items() if g}

    # ========================================================================
    # WRITES (each returns the gas charged)
    # ========================================================================

    def set_monetary_policy(self, sender: Account, policy: Account) -> int:
        """
        Authorize policy to rebase.

        Raises:
            AuthorizationFailure: If sender is not the owner
        """
        meter = _GasMeter(calldata_words=1)
        meter.read()
        if sender != self.owner:
            raise AuthorizationFailure(
                f"{sender} is not the owner", "setMonetaryPolicy", (policy,)
            )
        meter.write(0 if self.monetary_policy is None else 1, 1)
        meter.log()
        self.monetary_policy = policy
        return meter.used

    def rebase(self, sender: Account, epoch: int, supply_delta: int) -> int:
        """
        Adjust the total supply by supply_delta and rescale gons_per_fragment.

        A zero delta changes nothing but is still recorded.

        Raises:
            AuthorizationFailure: If sender is not the monetary policy
            RevertFailure: If the supply would become negative or exceed max_supply
        """
        call_args = (epoch, supply_delta)
        meter = _GasMeter(calldata_words=2)
        meter.read()
        if self.monetary_policy is None or sender != self.monetary_policy:
            raise AuthorizationFailure(
                f"{sender} is not the monetary policy", "rebase", call_args
            )
        if supply_delta == 0:
            meter.log()
            self.rebases.append(RebaseRecord(epoch, 0, self._total_supply))
            return meter.used

        meter.read(2)
        new_supply = self._total_supply + supply_delta
        if new_supply < 0:
            raise RevertFailure(
                f"supply would become negative ({new_supply})", "rebase", call_args
            )
        if new_supply == 0:
            raise RevertFailure("supply would become zero", "rebase", call_args)
        if new_supply > self.max_supply:
            raise RevertFailure(
                f"supply {new_supply} exceeds maximum {self.max_supply}", "rebase", call_args
            )

        meter.write(self._total_supply, new_supply)
        meter.write(self._gons_per_fragment, self.total_gons // new_supply)
        meter.log()
        self._total_supply = new_supply
        self._gons_per_fragment = self.total_gons // new_supply
        self.rebases.append(RebaseRecord(epoch, supply_delta, new_supply))
        return meter.used

    def transfer(self, sender: Account, to: Account, amount: int) -> int:
        """
        Move amount external units from sender to to.

        Raises:
            RevertFailure: If amount is negative, exceeds the sender's balance,
                           or to is the zero address / the ledger itself
        """
        call_args = (sender, to, amount)
        meter = _GasMeter(calldata_words=2)
        self._validate_recipient(to, "transfer", call_args)
        meter.read(2)
        self._move(sender, to, amount, meter, "transfer", call_args)
        meter.log()
        return meter.used

    def approve(self, owner: Account, spender: Account, amount: int) -> int:
        """Set spender's allowance over owner's balance to amount."""
        call_args = (owner, spender, amount)
        if amount < 0:
            raise RevertFailure("negative allowance", "approve", call_args)
        meter = _GasMeter(calldata_words=2)
        key = (owner, spender)
        meter.write(self._allowances.get(key, 0), amount)
        meter.log()
        self._allowances[key] = amount
        return meter.used

    def transfer_from(self, spender: Account, owner: Account, to: Account, amount: int) -> int:
        """
        Move amount from owner to to, spending spender's allowance.

        Raises:
            RevertFailure: If the allowance or owner's balance is insufficient
        """
        call_args = (owner, to, amount)
        meter = _GasMeter(calldata_words=3)
        self._validate_recipient(to, "transferFrom", call_args)
        key = (owner, spender)
        meter.read()
        allowed = self._allowances.get(key, 0)
        if amount > allowed:
            raise RevertFailure(
                f"allowance {allowed} below {amount}", "transferFrom", call_args
            )
        meter.read(2)
        self._move(owner, to, amount, meter, "transferFrom", call_args)
        meter.write(allowed, allowed - amount)
        meter.log()
        self._allowances[key] = allowed - amount
        return meter.used

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _validate_recipient(self, to: Account, operation: str, call_args: Tuple[Any, ...]) -> None:
        if to == ZERO_ADDRESS or to == self.address:
            raise RevertFailure(f"invalid recipient {to}", operation, call_args)

    def _move(
        self,
        source: Account,
        dest: Account,
        amount: int,
        meter: _GasMeter,
        operation: str,
        call_args: Tuple[Any, ...],
    ) -> None:
        if amount < 0:
            raise RevertFailure("negative amount", operation, call_args)
        gon_value = amount * self._gons_per_fragment
        src_gons = self._gon_balances.get(source, 0)
        if gon_value > src_gons:
            raise RevertFailure(
                f"amount {amount} exceeds balance {self.balance_of(source)}", operation, call_args
            )
        dst_gons = self._gon_balances.get(dest, 0)
        if source == dest:
            return
        meter.write(src_gons, src_gons - gon_value)
        meter.write(dst_gons, dst_gons + gon_value)
        self._gon_balances[source] = src_gons - gon_value
        self._gon_balances[dest] = dst_gons + gon_value

    def __repr__(self) -> str:
        return (
            f"FragmentsLedger({self.symbol} @ {self.address}, supply={self._total_supply}, "
            f"holders={len(self.holders())}, rebases={len(self.rebases)})"
        )


class InMemoryLedgerClient:
    """
    LedgerClient backed by in-process FragmentsLedger instances.

    Implements the LedgerClient protocol with the same arithmetic as the
    deployed ledger. Snapshots are deep copies of every ledger and the
    transaction counter.

    Example:
        client = InMemoryLedgerClient(initial_supply=50_000_000)
        deployer, user = client.accounts()[:2]
        handle = client.deploy_ledger(deployer, "xBTC", "xBTC")
        client.transfer(handle, deployer, user, 10)
    """

    def __init__(
        self,
        accounts: Optional[List[Account]] = None,
        initial_supply: int = DEFAULT_INITIAL_SUPPLY,
        max_supply: int = MAX_SUPPLY,
        verbose: bool = False,
    ):
        """
        Create a client.

        Args:
            accounts: Account identities to provision (default: two derived addresses)
            initial_supply: Supply credited to the owner of each deployed ledger
            max_supply: Maximum total supply of each deployed ledger
            verbose: Print a line per deployment
        """
        if accounts is None:
            accounts = [_address("deployer"), _address("user")]
        if len(accounts) < 2:
            raise ValueError("At least two accounts are required")
        self._accounts = list(accounts)
        self.initial_supply = initial_supply
        self.max_supply = max_supply
        self.verbose = verbose
        self.ledgers: Dict[LedgerHandle, FragmentsLedger] = {}
        self._tx_count = 0
        self._snapshots: Dict[int, Tuple[Dict[LedgerHandle, FragmentsLedger], int]] = {}
        self._next_snapshot = 1

    # ========================================================================
    # LedgerClient PROTOCOL IMPLEMENTATION
    # ========================================================================

    def accounts(self) -> List[Account]:
        return list(self._accounts)

    def deploy_ledger(self, initial_admin: Account, name: str, symbol: str) -> LedgerHandle:
        address = _address(f"ledger:{len(self.ledgers)}:{self._tx_count}")
        self.ledgers[address] = FragmentsLedger(
            address, initial_admin, name, symbol,
            initial_supply=self.initial_supply,
            max_supply=self.max_supply,
        )
        self._tx_count += 1
        if self.verbose:
            print(f"Deployed: {symbol} ({name}) at {address}, owner={initial_admin}")
        return address

    def set_monetary_policy(self, handle: LedgerHandle, admin: Account) -> OperationReceipt:
        ledger = self._ledger(handle, "setMonetaryPolicy")
        return self._receipt("setMonetaryPolicy", ledger.set_monetary_policy(ledger.owner, admin))

    def rebase(self, handle: LedgerHandle, epoch: int, supply_delta: int, sender: Account) -> OperationReceipt:
        ledger = self._ledger(handle, "rebase")
        return self._receipt("rebase", ledger.rebase(sender, epoch, supply_delta))

    def transfer(self, handle: LedgerHandle, sender: Account, to: Account, amount: int) -> OperationReceipt:
        ledger = self._ledger(handle, "transfer")
        return self._receipt("transfer", ledger.transfer(sender, to, amount))

    def approve(self, handle: LedgerHandle, owner: Account, spender: Account, amount: int) -> OperationReceipt:
        ledger = self._ledger(handle, "approve")
        return self._receipt("approve", ledger.approve(owner, spender, amount))

    def transfer_from(
        self, handle: LedgerHandle, spender: Account, owner: Account, to: Account, amount: int
    ) -> OperationReceipt:
        ledger = self._ledger(handle, "transferFrom")
        return self._receipt("transferFrom", ledger.transfer_from(spender, owner, to, amount))

    def allowance(self, handle: LedgerHandle, owner: Account, spender: Account) -> int:
        return self._ledger(handle, "allowance").allowance(owner, spender)

    def balance_of(self, handle: LedgerHandle, account: Account) -> int:
        return self._ledger(handle, "balanceOf").balance_of(account)

    def total_supply(self, handle: LedgerHandle) -> int:
        return self._ledger(handle, "totalSupply").total_supply

    def snapshot(self) -> int:
        snapshot_id = self._next_snapshot
        self._next_snapshot += 1
        self._snapshots[snapshot_id] = (copy.deepcopy(self.ledgers), self._tx_count)
        return snapshot_id

    def revert(self, snapshot_id: int) -> None:
        """
        Restore a snapshot. Like evm_revert, the snapshot and every later one
        are consumed.

        Raises:
            LedgerClientError: If the snapshot id is unknown
        """
        if snapshot_id not in self._snapshots:
            raise LedgerClientError(f"unknown snapshot {snapshot_id}", "revert", (snapshot_id,))
        ledgers, tx_count = self._snapshots[snapshot_id]
        self.ledgers = ledgers
        self._tx_count = tx_count
        for sid in [s for s in self._snapshots if s >= snapshot_id]:
            del self._snapshots[sid]

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _ledger(self, handle: LedgerHandle, operation: str) -> FragmentsLedger:
        if handle not in self.ledgers:
            raise RevertFailure(f"no ledger deployed at {handle}", operation, (handle,))
        return self.ledgers[handle]

    def _receipt(self, operation: str, gas_used: int) -> OperationReceipt:
        tx_hash = "0x" + hashlib.sha256(f"tx:{self._tx_count}:{operation}".encode()).hexdigest()
        self._tx_count += 1
        return OperationReceipt(operation=operation, tx_hash=tx_hash, gas_used=gas_used)

    def __repr__(self) -> str:
        return f"InMemoryLedgerClient({len(self.ledgers)} ledgers, {len(self._accounts)} accounts)"
