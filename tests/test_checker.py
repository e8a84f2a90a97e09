"""
test_checker.py - Tests for InvariantChecker

Tests:
- check_transfer: passes on an exact ledger, detects each broken equality
- check_balances_after_operation: snapshot ordering
- check_round: both denominations, both directions, balances restored
"""

from decimal import Decimal

import pytest

from rebase_harness import (
    InvariantChecker,
    InvariantViolation,
    RevertFailure,
    rebase_amount,
)
from tests.conftest import deploy
from tests.fake_clients import LeakyLedgerClient


class TestCheckTransfer:
    """Tests for check_transfer."""

    def test_exact_transfer_passes(self, deployed):
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        checker.check_transfer([deployer, user], 1)
        assert checker.checks_passed == 1
        assert client.balance_of(handle, user) == 1

    def test_passes_after_rebases(self, deployed):
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        for epoch, rate in enumerate(["1.73205", "-0.41421", "2.23606"], start=1):
            supply = client.total_supply(handle)
            client.rebase(handle, epoch, rebase_amount(supply, Decimal(rate)), deployer)
            checker.check_transfer([deployer, user], 1)
            checker.check_transfer([user, deployer], 1)
        assert checker.checks_passed == 6

    def test_custom_apply(self, deployed):
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        client.approve(handle, deployer, user, 7)
        checker.check_transfer(
            [deployer, user], 7,
            apply=lambda: client.transfer_from(handle, user, deployer, user, 7),
        )

    def test_wrong_amount_detected(self, deployed):
        """An apply that moves a different amount than declared breaks exactness."""
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        with pytest.raises(InvariantViolation) as exc_info:
            checker.check_transfer(
                [deployer, user], 5,
                apply=lambda: client.transfer(handle, deployer, user, 4),
            )
        assert "sender balance" in exc_info.value.operation
        assert exc_info.value.expected == 50_000_000 - 5
        assert exc_info.value.actual == 50_000_000 - 4

    def test_leak_detected_as_conservation_failure(self):
        client = LeakyLedgerClient(leak_above=0)
        handle, deployer, user = deploy(client)
        checker = InvariantChecker(client, handle)
        with pytest.raises(InvariantViolation) as exc_info:
            checker.check_transfer([deployer, user], 10)
        assert "conservation" in exc_info.value.operation
        assert exc_info.value.actual - exc_info.value.expected == -1
        assert checker.checks_passed == 0

    def test_revert_propagates(self, deployed):
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        with pytest.raises(RevertFailure):
            checker.check_transfer([user, deployer], 1)

    def test_requires_two_participants(self, deployed):
        client, handle, deployer, user = deployed
        with pytest.raises(ValueError):
            InvariantChecker(client, handle).check_transfer([deployer], 1)


class TestCheckBalancesAfterOperation:
    """Tests for the generic before/after primitive."""

    def test_snapshots_surround_operation(self, deployed):
        client, handle, deployer, user = deployed
        checker = InvariantChecker(client, handle)
        seen = {}

        def check(before, after):
            seen["before"], seen["after"] = before, after

        checker.check_balances_after_operation(
            [deployer, user], lambda: client.transfer(handle, deployer, user, 3), check
        )
        assert seen["before"] == [50_000_000, 0]
        assert seen["after"] == [49_999_997, 3]


class TestCheckRound:
    """Tests for the per-round battery."""

    def test_round_restores_balances(self, deployed):
        client, handle, deployer, user = deployed
        client.rebase(handle, 1, rebase_amount(50_000_000, Decimal("0.77777")), deployer)
        before = (client.balance_of(handle, deployer), client.balance_of(handle, user))
        checker = InvariantChecker(client, handle)
        checker.check_round(deployer, user)
        assert checker.checks_passed == 4
        assert (client.balance_of(handle, deployer), client.balance_of(handle, user)) == before

    def test_round_on_tiny_supply(self, small_deployed):
        client, handle, deployer, user = small_deployed
        client.rebase(handle, 1, rebase_amount(1000, Decimal("-0.49999")), deployer)
        InvariantChecker(client, handle).check_round(deployer, user)

    def test_leaky_max_denomination_detected(self):
        client = LeakyLedgerClient(leak_above=1)
        handle, deployer, user = deploy(client)
        checker = InvariantChecker(client, handle)
        with pytest.raises(InvariantViolation):
            checker.check_round(deployer, user)
        # The two 1-unit transfers passed before the leak showed up.
        assert checker.checks_passed == 2

    def test_verbose_output(self, deployed, capsys):
        client, handle, deployer, user = deployed
        InvariantChecker(client, handle, verbose=True).check_round(deployer, user)
        out = capsys.readouterr().out
        assert "Testing precision of 1c transfer" in out
        assert "Testing precision of max denomination" in out
