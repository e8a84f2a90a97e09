"""
cli.py - Command-line entry point

    python -m rebase_harness simulate [options]
    python -m rebase_harness gas save|verify [options]

Exit codes: 0 on success, 1 on an invariant violation, ledger failure, cost
drift or unreadable baseline, 2 on usage errors.
"""

from __future__ import annotations
import argparse
import math
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import yaml

from .core import (
    LedgerClient,
    HarnessError,
    MAX_SUPPLY,
    DEFAULT_SEED,
    DEFAULT_GROWTH_MIN,
    DEFAULT_GROWTH_MAX,
    DEFAULT_INITIAL_SUPPLY,
    DEFAULT_MAX_ROUNDS,
)
from .analysis import expected_rounds, summarize_rounds
from .gas import CostRegressionHarness, GasConfig, DEFAULT_BASELINE_PATH, DEFAULT_GAS_PRICE_WEI
from .memory import InMemoryLedgerClient
from .pricing import (
    FallbackPricingSource,
    HttpPricingSource,
    StaticPricingSource,
    DEFAULT_FALLBACK_RATE,
    DEFAULT_RATE_URL,
)
from .simulation import SimulationConfig, SimulationDriver


RPC_URL_ENV = "REBASE_HARNESS_RPC_URL"
ARTIFACT_ENV = "REBASE_HARNESS_ARTIFACT"


def _add_backend_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--backend",
        choices=["memory", "web3"],
        default="memory",
        help="Ledger to drive: in-memory model (default) or a contract on a JSON-RPC node",
    )
    parser.add_argument(
        "--rpc-url",
        default=os.environ.get(RPC_URL_ENV, "http://127.0.0.1:8545"),
        help=f"JSON-RPC endpoint for --backend web3 (env: {RPC_URL_ENV})",
    )
    parser.add_argument(
        "--artifact",
        default=os.environ.get(ARTIFACT_ENV),
        help=f"Compiled ledger artifact (JSON with abi and bytecode) for --backend web3 (env: {ARTIFACT_ENV})",
    )
    parser.add_argument(
        "--initial-supply",
        type=int,
        default=DEFAULT_INITIAL_SUPPLY,
        help="Initial supply of the in-memory ledger",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print the final outcome")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rebase_harness",
        description="Rebasing ledger verification harness",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run the transfer-precision simulation")
    _add_backend_arguments(sim)
    sim.add_argument("--seed", default=DEFAULT_SEED, help="Growth sampler seed")
    sim.add_argument("--growth-min", type=Decimal, default=DEFAULT_GROWTH_MIN)
    sim.add_argument("--growth-max", type=Decimal, default=DEFAULT_GROWTH_MAX)
    sim.add_argument("--max-supply", type=int, default=MAX_SUPPLY)
    sim.add_argument("--max-rounds", type=int, default=DEFAULT_MAX_ROUNDS)

    gas = sub.add_parser("gas", help="Measure operation costs against a baseline")
    gas.add_argument("action", choices=["save", "verify"], nargs="?", default="save")
    _add_backend_arguments(gas)
    gas.add_argument("--baseline", type=Path, default=DEFAULT_BASELINE_PATH)
    gas.add_argument("--gas-price", type=int, default=DEFAULT_GAS_PRICE_WEI, help="Gas price in wei")
    gas.add_argument("--rate-url", default=DEFAULT_RATE_URL)
    gas.add_argument("--fallback-rate", type=Decimal, default=DEFAULT_FALLBACK_RATE)
    gas.add_argument("--tolerance", type=int, default=0, help="Accepted absolute drift per operation")
    gas.add_argument("--offline", action="store_true", help="Skip the rate lookup and use the fallback rate")
    return parser


def make_client(args: argparse.Namespace, parser: argparse.ArgumentParser) -> LedgerClient:
    if args.backend == "memory":
        return InMemoryLedgerClient(initial_supply=args.initial_supply, verbose=not args.quiet)
    if not args.artifact:
        parser.error("--artifact is required with --backend web3")
    from .web3_client import Web3LedgerClient
    return Web3LedgerClient.from_url(args.rpc_url, args.artifact, verbose=not args.quiet)


def run_simulate(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    try:
        config = SimulationConfig(
            seed=args.seed,
            growth_min=args.growth_min,
            growth_max=args.growth_max,
            max_supply=args.max_supply,
            max_rounds=args.max_rounds,
            initial_supply=args.initial_supply if args.backend == "memory" else None,
            verbose=not args.quiet,
        )
    except ValueError as e:
        parser.error(str(e))
    client = make_client(args, parser)
    driver = SimulationDriver.provision(client, config)
    initial_supply = driver.supply
    result = driver.run()

    if result.error is not None:
        print(f"FAILED at round {len(result.rounds) + 1}: {result.error}", file=sys.stderr)
        return 1

    stats = summarize_rounds(result.rounds)
    if config.growth_min > -1:
        expected = expected_rounds(initial_supply, config.max_supply, config.growth_min, config.growth_max)
    else:
        expected = math.inf
    print(
        f"Simulation complete: {stats['rounds']} rounds ({expected:.1f} expected), "
        f"{stats['contractions']} contractions, final supply {result.final_supply}"
    )
    return 0


def run_gas(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    try:
        config = GasConfig(
            gas_price_wei=args.gas_price,
            baseline_path=args.baseline,
            rate_url=args.rate_url,
            fallback_rate=args.fallback_rate,
            tolerance=args.tolerance,
            verbose=not args.quiet,
        )
    except ValueError as e:
        parser.error(str(e))
    http_source = None
    if args.offline:
        pricing = StaticPricingSource({config.native_symbol: config.fallback_rate})
    else:
        http_source = HttpPricingSource(url=config.rate_url)
        pricing = FallbackPricingSource(
            http_source,
            fallback_rate=config.fallback_rate,
            verbose=config.verbose,
        )
    try:
        harness = CostRegressionHarness(make_client(args, parser), pricing, config)
        harness.compute()
        if args.action == "save":
            harness.save()
        else:
            harness.verify()
    finally:
        if http_source is not None:
            http_source.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "simulate":
            return run_simulate(args, parser)
        return run_gas(args, parser)
    except (HarnessError, FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1
