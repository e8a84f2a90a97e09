"""
checker.py - Balance conservation and transfer exactness checks

INVARIANT: for a transfer of amount a (0 <= a <= b1) from account 1 to account 2,

    b1' + b2' == b1 + b2
    b1'       == b1 - a
    b2'       == b2 + a

exactly, no matter how many rebases preceded the transfer.

The checker snapshots balances around an operation and asserts these
equalities. A failure raises InvariantViolation and is never retried: it
points at a defect in the ledger, not at a transient condition.
"""

from __future__ import annotations
from typing import Callable, List, Optional, Sequence

from .core import (
    Account,
    LedgerClient,
    LedgerHandle,
    InvariantViolation,
)


BalanceCheck = Callable[[List[int], List[int]], None]

# Smallest representable transfer.
UNIT_DENOMINATION = 1


class InvariantChecker:
    """
    Verifies transfer invariants against a live ledger.

    Example:
        checker = InvariantChecker(client, handle)
        checker.check_transfer([deployer, user], 1)
        checker.check_round(deployer, user)
    """

    def __init__(self, client: LedgerClient, handle: LedgerHandle, verbose: bool = False):
        self.client = client
        self.handle = handle
        self.verbose = verbose
        self.checks_passed = 0

    def balances(self, participants: Sequence[Account]) -> List[int]:
        """Read the current balance of each participant, in order."""
        return [self.client.balance_of(self.handle, p) for p in participants]

    def check_balances_after_operation(
        self,
        participants: Sequence[Account],
        op: Callable[[], object],
        check: BalanceCheck,
    ) -> None:
        """
        Snapshot balances, run op, snapshot again, and hand both to check.

        Args:
            participants: Accounts whose balances are observed
            op: Operation to run between the snapshots
            check: Receives (before, after) balance lists; raises on failure
        """
        before = self.balances(participants)
        op()
        after = self.balances(participants)
        check(before, after)

    def check_transfer(
        self,
        participants: Sequence[Account],
        amount: int,
        apply: Optional[Callable[[], object]] = None,
    ) -> None:
        """
        Verify conservation and exactness of a transfer from participants[0] to participants[1].

        Args:
            participants: [sender, receiver]
            amount: Amount transferred
            apply: Operation performing the transfer (default: client.transfer)

        Raises:
            InvariantViolation: On the first equality that does not hold
            LedgerClientError: If the transfer itself fails
        """
        if len(participants) != 2:
            raise ValueError(f"check_transfer takes exactly two participants, got {len(participants)}")
        sender, receiver = participants
        if apply is None:
            def _transfer():
                return self.client.transfer(self.handle, sender, receiver, amount)
            apply = _transfer

        label = f"transfer({sender} -> {receiver}, {amount})"

        def check(before: List[int], after: List[int]) -> None:
            (sender_before, receiver_before), (sender_after, receiver_after) = before, after
            if sender_after + receiver_after != sender_before + receiver_before:
                raise InvariantViolation(
                    f"{label} conservation",
                    sender_before + receiver_before,
                    sender_after + receiver_after,
                )
            if sender_after != sender_before - amount:
                raise InvariantViolation(f"{label} sender balance", sender_before - amount, sender_after)
            if receiver_after != receiver_before + amount:
                raise InvariantViolation(f"{label} receiver balance", receiver_before + amount, receiver_after)

        self.check_balances_after_operation(participants, apply, check)
        self.checks_passed += 1

    def check_round(self, deployer: Account, user: Account) -> None:
        """
        Run the per-round battery: one unit and the max denomination, both directions.

        The max denomination is the deployer's whole balance, read once, so the
        forward transfer drains the deployer and the return transfer restores it.
        """
        if self.verbose:
            print("Testing precision of 1c transfer")
        self.check_transfer([deployer, user], UNIT_DENOMINATION)
        self.check_transfer([user, deployer], UNIT_DENOMINATION)

        if self.verbose:
            print("Testing precision of max denomination")
        max_denomination = self.client.balance_of(self.handle, deployer)
        self.check_transfer([deployer, user], max_denomination)
        self.check_transfer([user, deployer], max_denomination)
