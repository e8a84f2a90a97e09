#!/usr/bin/env python3
"""
demo.py - Walkthrough: How the Rebase Harness Checks a Ledger

Each step builds on the previous one. Press Enter to advance.

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from decimal import Decimal
import sys

from rebase_harness import (
    InMemoryLedgerClient,
    InvariantChecker,
    InvariantViolation,
    SimulationConfig,
    SimulationDriver,
    SequenceSampler,
    StaticPricingSource,
    UniformGrowthSampler,
    CostRegressionHarness,
    GasConfig,
    rebase_amount,
    expected_rounds,
    MAX_SUPPLY,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    initial_supply: int = 50_000_000
    seed: str = "fragments.org"
    eth_usd: Decimal = Decimal("700")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


# ============================================================================
# STEPS
# ============================================================================

def step_01_rebasing():
    """Deploy a ledger and rebase it."""
    step_header(1, "A Rebasing Ledger",
        "See that a rebase rescales every balance at once.")

    client = InMemoryLedgerClient(initial_supply=CONFIG.initial_supply, verbose=True)
    deployer, user = client.accounts()[:2]
    handle = client.deploy_ledger(deployer, "xBTC", "xBTC")
    client.set_monetary_policy(handle, deployer)
    client.transfer(handle, deployer, user, 10_000_000)

    section_header("Before")
    print(f"Total supply: {client.total_supply(handle)}")
    print(f"Deployer:     {client.balance_of(handle, deployer)}")
    print(f"User:         {client.balance_of(handle, user)}")

    delta = rebase_amount(client.total_supply(handle), Decimal("0.33333"))
    client.rebase(handle, 1, delta, deployer)

    section_header(f"After rebase by {delta:+d}")
    print(f"Total supply: {client.total_supply(handle)}")
    print(f"Deployer:     {client.balance_of(handle, deployer)}")
    print(f"User:         {client.balance_of(handle, user)}")

    wait_for_enter()
    return client, handle, deployer, user


def step_02_exact_transfers(client, handle, deployer, user):
    """Check transfer exactness after the rebase."""
    step_header(2, "Exact Transfers",
        "A transfer of a moves exactly a, no matter how balances were rescaled.")

    checker = InvariantChecker(client, handle, verbose=True)
    checker.check_round(deployer, user)
    print(f"\nChecks passed: {checker.checks_passed}")

    wait_for_enter()


def step_03_growth_rates():
    """Show the seeded growth-rate stream."""
    step_header(3, "Reproducible Growth Rates",
        "The same seed always produces the same rates.")

    rates = UniformGrowthSampler(CONFIG.seed).take(5)
    print(f"First rates for seed {CONFIG.seed!r}: {[str(r) for r in rates]}")
    again = UniformGrowthSampler(CONFIG.seed).take(5)
    print(f"Same again:                     {rates == again}")
    rounds = expected_rounds(CONFIG.initial_supply, MAX_SUPPLY, Decimal("-0.5"), Decimal("2.5"))
    print(f"Expected rounds to reach the supply bound: {rounds:.1f}")

    wait_for_enter()


def step_04_simulation():
    """Run the full simulation."""
    step_header(4, "The Simulation",
        "Rebase with random growth, checking transfers every round, until the bound.")

    client = InMemoryLedgerClient(initial_supply=CONFIG.initial_supply)
    config = SimulationConfig(seed=CONFIG.seed, verbose=False)
    result = SimulationDriver.provision(client, config).run()
    print(f"State:        {result.state.value}")
    print(f"Rounds:       {len(result.rounds)}")
    print(f"Final supply: {result.final_supply}")
    for r in result.rounds[:3]:
        print(f"  {r!r}")

    wait_for_enter()


def step_05_catching_a_defect():
    """Show what a violation looks like."""
    step_header(5, "Catching a Defect",
        "A ledger that loses a unit on transfer is stopped at the first round.")

    class LossyClient(InMemoryLedgerClient):
        def transfer(self, handle, sender, to, amount):
            receipt = super().transfer(handle, sender, to, amount)
            ledger = self.ledgers[handle]
            ledger._gon_balances[to] -= ledger.gons_per_fragment
            return receipt

    config = SimulationConfig(max_supply=10 ** 9, verbose=False)
    result = SimulationDriver.provision(LossyClient(), config, SequenceSampler(["0.5"])).run()
    print(f"State: {result.state.value}")
    if isinstance(result.error, InvariantViolation):
        print(f"Error: {result.error}")

    wait_for_enter()


def step_06_costs():
    """Measure operation costs."""
    step_header(6, "Operation Costs",
        "Every measured operation runs in a snapshot that is reverted afterwards.")

    pricing = StaticPricingSource({"ETH": CONFIG.eth_usd})
    harness = CostRegressionHarness(InMemoryLedgerClient(), pricing, GasConfig())
    harness.compute()


def main():
    print("=" * 70)
    print("       REBASE HARNESS WALKTHROUGH")
    print("=" * 70)

    client, handle, deployer, user = step_01_rebasing()
    step_02_exact_transfers(client, handle, deployer, user)
    step_03_growth_rates()
    step_04_simulation()
    step_05_catching_a_defect()
    step_06_costs()

    print("\n" + "=" * 70)
    print("       WALKTHROUGH COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - python -m rebase_harness simulate
      - python -m rebase_harness gas save --offline
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
