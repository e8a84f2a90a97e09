"""
web3_client.py - LedgerClient for a ledger contract on an Ethereum JSON-RPC node

The ledger contract is deployed from a Truffle-style JSON artifact holding
"abi" and "bytecode", then initialized through initialize(owner, name, symbol).
Every mutating call waits for its receipt before returning.

Error mapping:
    ContractLogicError, failed receipt,
    JSON-RPC error responses                -> RevertFailure
      (AuthorizationFailure when the sender is not the authorized caller)
    transport errors, receipt timeout       -> CommunicationFailure
"""

from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .core import (
    Account,
    LedgerHandle,
    OperationReceipt,
    LedgerClientError,
    CommunicationFailure,
    RevertFailure,
    AuthorizationFailure,
)


DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_GAS_LIMIT = 6_000_000

# Operation -> view function returning the only account allowed to call it.
_AUTHORIZED_CALLER = {
    "rebase": "monetaryPolicy",
    "setMonetaryPolicy": "owner",
}


def load_artifact(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a compiled contract artifact.

    Raises:
        ValueError: If the artifact lacks an ABI or bytecode
    """
    with open(path, "r", encoding="utf-8") as f:
        artifact = json.load(f)
    if "abi" not in artifact or "bytecode" not in artifact:
        raise ValueError(f"Artifact {path} must contain 'abi' and 'bytecode'")
    return artifact


class Web3LedgerClient:
    """
    LedgerClient implementation over web3.

    Example:
        w3 = Web3(Web3.HTTPProvider("http://127.0.0.1:8545"))
        client = Web3LedgerClient(w3, load_artifact("build/contracts/UFragments.json"))
        deployer, user = client.accounts()[:2]
        handle = client.deploy_ledger(deployer, "xBTC", "xBTC")
    """

    def __init__(
        self,
        w3: Web3,
        artifact: Dict[str, Any],
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        verbose: bool = False,
    ):
        self.w3 = w3
        self.abi = artifact["abi"]
        self.bytecode = artifact["bytecode"]
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.verbose = verbose
        self._contracts: Dict[LedgerHandle, Any] = {}

    @classmethod
    def from_url(cls, url: str, artifact_path: Union[str, Path], timeout: float = 60.0, **kwargs) -> "Web3LedgerClient":
        """Connect to an HTTP JSON-RPC endpoint and load the artifact."""
        w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))
        return cls(w3, load_artifact(artifact_path), **kwargs)

    # ========================================================================
    # LedgerClient PROTOCOL IMPLEMENTATION
    # ========================================================================

    def accounts(self) -> List[Account]:
        return list(self._guard("accounts", (), lambda: self.w3.eth.accounts))

    def deploy_ledger(self, initial_admin: Account, name: str, symbol: str) -> LedgerHandle:
        call_args = (initial_admin, name, symbol)

        def deploy():
            factory = self.w3.eth.contract(abi=self.abi, bytecode=self.bytecode)
            tx_hash = factory.constructor().transact(self._tx(initial_admin))
            return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

        receipt = self._guard("deploy", call_args, deploy)
        self._require_success("deploy", call_args, receipt)
        address = receipt["contractAddress"]
        contract = self._contract(address)
        self._send(
            "initialize", call_args, initial_admin,
            contract.functions.initialize(initial_admin, name, symbol),
        )
        if self.verbose:
            print(f"Deployed: {symbol} ({name}) at {address}, owner={initial_admin}")
        return address

    def set_monetary_policy(self, handle: LedgerHandle, admin: Account) -> OperationReceipt:
        contract = self._contract(handle)
        owner = self._guard("owner", (), contract.functions.owner().call)
        return self._send(
            "setMonetaryPolicy", (admin,), owner,
            contract.functions.setMonetaryPolicy(admin), handle=handle,
        )

    def rebase(self, handle: LedgerHandle, epoch: int, supply_delta: int, sender: Account) -> OperationReceipt:
        contract = self._contract(handle)
        return self._send(
            "rebase", (epoch, supply_delta), sender,
            contract.functions.rebase(epoch, supply_delta), handle=handle,
        )

    def transfer(self, handle: LedgerHandle, sender: Account, to: Account, amount: int) -> OperationReceipt:
        contract = self._contract(handle)
        return self._send("transfer", (to, amount), sender, contract.functions.transfer(to, amount))

    def approve(self, handle: LedgerHandle, owner: Account, spender: Account, amount: int) -> OperationReceipt:
        contract = self._contract(handle)
        return self._send("approve", (spender, amount), owner, contract.functions.approve(spender, amount))

    def transfer_from(
        self, handle: LedgerHandle, spender: Account, owner: Account, to: Account, amount: int
    ) -> OperationReceipt:
        contract = self._contract(handle)
        return self._send(
            "transferFrom", (owner, to, amount), spender,
            contract.functions.transferFrom(owner, to, amount),
        )

    def allowance(self, handle: LedgerHandle, owner: Account, spender: Account) -> int:
        fn = self._contract(handle).functions.allowance(owner, spender)
        return int(self._guard("allowance", (owner, spender), fn.call))

    def balance_of(self, handle: LedgerHandle, account: Account) -> int:
        fn = self._contract(handle).functions.balanceOf(account)
        return int(self._guard("balanceOf", (account,), fn.call))

    def total_supply(self, handle: LedgerHandle) -> int:
        fn = self._contract(handle).functions.totalSupply()
        return int(self._guard("totalSupply", (), fn.call))

    def snapshot(self) -> str:
        response = self._guard("evm_snapshot", (), lambda: self.w3.provider.make_request("evm_snapshot", []))
        return self._rpc_result("evm_snapshot", response)

    def revert(self, snapshot_id: str) -> None:
        response = self._guard(
            "evm_revert", (snapshot_id,),
            lambda: self.w3.provider.make_request("evm_revert", [snapshot_id]),
        )
        if not self._rpc_result("evm_revert", response):
            raise LedgerClientError(f"node refused to revert to {snapshot_id}", "evm_revert", (snapshot_id,))

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _contract(self, handle: LedgerHandle):
        if handle not in self._contracts:
            self._contracts[handle] = self.w3.eth.contract(address=handle, abi=self.abi)
        return self._contracts[handle]

    def _tx(self, sender: Account) -> Dict[str, Any]:
        return {"from": sender, "gas": self.gas_limit}

    def _guard(self, operation: str, call_args: Tuple[Any, ...], fn: Callable[[], Any]) -> Any:
        """Run fn, translating web3 and transport errors into the harness taxonomy."""
        try:
            return fn()
        except ContractLogicError as e:
            raise RevertFailure(str(e), operation, call_args) from e
        except TimeExhausted as e:
            raise CommunicationFailure(f"receipt timeout: {e}", operation, call_args) from e
        except (requests.exceptions.RequestException, ConnectionError) as e:
            raise CommunicationFailure(str(e), operation, call_args) from e
        except Web3Exception as e:
            raise RevertFailure(str(e), operation, call_args) from e
        except ValueError as e:
            # JSON-RPC error responses (e.g. a revert on eth_sendTransaction)
            # surface as a plain ValueError on web3 6.x.
            raise RevertFailure(str(e), operation, call_args) from e

    def _send(
        self,
        operation: str,
        call_args: Tuple[Any, ...],
        sender: Account,
        fn: Any,
        handle: Optional[LedgerHandle] = None,
    ) -> OperationReceipt:
        """Transact a contract function call and wait for its receipt."""
        def transact():
            tx_hash = fn.transact(self._tx(sender))
            return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

        try:
            receipt = self._guard(operation, call_args, transact)
            self._require_success(operation, call_args, receipt)
        except RevertFailure as e:
            if handle is not None and self._is_unauthorized(handle, operation, sender):
                raise AuthorizationFailure(
                    f"{sender} is not authorized to call {operation}", operation, call_args
                ) from e
            raise
        tx_hash = receipt["transactionHash"]
        return OperationReceipt(
            operation=operation,
            tx_hash=tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash),
            gas_used=int(receipt["gasUsed"]),
        )

    def _require_success(self, operation: str, call_args: Tuple[Any, ...], receipt: Any) -> None:
        if receipt.get("status", 1) == 0:
            raise RevertFailure("transaction reverted", operation, call_args)

    def _is_unauthorized(self, handle: LedgerHandle, operation: str, sender: Account) -> bool:
        getter = _AUTHORIZED_CALLER.get(operation)
        if getter is None:
            return False
        authorized = self._guard(getter, (), getattr(self._contract(handle).functions, getter)().call)
        return authorized.lower() != sender.lower()

    def _rpc_result(self, method: str, response: Dict[str, Any]) -> Any:
        if "error" in response:
            raise CommunicationFailure(str(response["error"]), method, ())
        return response.get("result")

    def __repr__(self) -> str:
        return f"Web3LedgerClient({self.w3.provider!r}, {len(self._contracts)} ledgers)"
