"""
test_web3_client.py - Tests for Web3LedgerClient

The web3 instance is a MagicMock; these tests pin the call shapes and the
error mapping, not a real node.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import ContractLogicError, TimeExhausted

from rebase_harness import (
    LedgerClient,
    LedgerClientError,
    CommunicationFailure,
    RevertFailure,
    AuthorizationFailure,
    SimulationConfig,
    SimulationDriver,
    SimulationState,
)
from rebase_harness.web3_client import Web3LedgerClient, load_artifact, DEFAULT_GAS_LIMIT


HANDLE = "0x00000000000000000000000000000000000000Cc"
DEPLOYER = "0x00000000000000000000000000000000000000Aa"
USER = "0x00000000000000000000000000000000000000Bb"
TX_HASH = bytes.fromhex("ab" * 32)


def receipt(status=1, gas_used=48861, contract_address=None):
    return {
        "status": status,
        "transactionHash": TX_HASH,
        "gasUsed": gas_used,
        "contractAddress": contract_address,
    }


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.accounts = [DEPLOYER, USER]
    w3.eth.wait_for_transaction_receipt.return_value = receipt()
    return w3


@pytest.fixture
def contract(w3):
    return w3.eth.contract.return_value


@pytest.fixture
def web3_client(w3):
    return Web3LedgerClient(w3, {"abi": [], "bytecode": "0x00"})


class TestLoadArtifact:

    def test_loads(self, tmp_path):
        path = tmp_path / "Ledger.json"
        path.write_text(json.dumps({"abi": [{"type": "function"}], "bytecode": "0x6080"}))
        assert load_artifact(path)["bytecode"] == "0x6080"

    def test_requires_abi_and_bytecode(self, tmp_path):
        path = tmp_path / "Ledger.json"
        path.write_text(json.dumps({"abi": []}))
        with pytest.raises(ValueError):
            load_artifact(path)


class TestReads:

    def test_is_ledger_client(self, web3_client):
        assert isinstance(web3_client, LedgerClient)

    def test_accounts(self, web3_client):
        assert web3_client.accounts() == [DEPLOYER, USER]

    def test_balance_of(self, web3_client, contract):
        contract.functions.balanceOf.return_value.call.return_value = 42
        assert web3_client.balance_of(HANDLE, USER) == 42
        contract.functions.balanceOf.assert_called_with(USER)

    def test_total_supply(self, web3_client, contract):
        contract.functions.totalSupply.return_value.call.return_value = 50_000_000
        assert web3_client.total_supply(HANDLE) == 50_000_000

    def test_allowance(self, web3_client, contract):
        contract.functions.allowance.return_value.call.return_value = 7
        assert web3_client.allowance(HANDLE, DEPLOYER, USER) == 7
        contract.functions.allowance.assert_called_with(DEPLOYER, USER)

    def test_contract_cached_per_handle(self, web3_client, w3, contract):
        contract.functions.totalSupply.return_value.call.return_value = 1
        web3_client.total_supply(HANDLE)
        web3_client.total_supply(HANDLE)
        assert w3.eth.contract.call_count == 1

    def test_transport_error(self, web3_client, contract):
        contract.functions.totalSupply.return_value.call.side_effect = (
            requests.exceptions.ConnectionError("connection refused")
        )
        with pytest.raises(CommunicationFailure) as exc_info:
            web3_client.total_supply(HANDLE)
        assert exc_info.value.operation == "totalSupply"


class TestWrites:

    def test_transfer_receipt(self, web3_client, contract):
        result = web3_client.transfer(HANDLE, DEPLOYER, USER, 10)
        contract.functions.transfer.assert_called_with(USER, 10)
        contract.functions.transfer.return_value.transact.assert_called_with(
            {"from": DEPLOYER, "gas": DEFAULT_GAS_LIMIT}
        )
        assert result.operation == "transfer"
        assert result.gas_used == 48861
        assert result.tx_hash == TX_HASH.hex()

    def test_transfer_from(self, web3_client, contract):
        web3_client.transfer_from(HANDLE, USER, DEPLOYER, USER, 10)
        contract.functions.transferFrom.assert_called_with(DEPLOYER, USER, 10)
        contract.functions.transferFrom.return_value.transact.assert_called_with(
            {"from": USER, "gas": DEFAULT_GAS_LIMIT}
        )

    def test_approve(self, web3_client, contract):
        web3_client.approve(HANDLE, DEPLOYER, USER, 10)
        contract.functions.approve.assert_called_with(USER, 10)

    def test_rebase(self, web3_client, contract):
        web3_client.rebase(HANDLE, 3, -100, DEPLOYER)
        contract.functions.rebase.assert_called_with(3, -100)

    def test_logic_error_is_revert(self, web3_client, contract):
        contract.functions.transfer.return_value.transact.side_effect = ContractLogicError("execution reverted")
        with pytest.raises(RevertFailure) as exc_info:
            web3_client.transfer(HANDLE, USER, DEPLOYER, 10)
        assert not isinstance(exc_info.value, AuthorizationFailure)
        assert exc_info.value.call_args == (DEPLOYER, 10)

    def test_rpc_error_response_is_revert(self, web3_client, contract):
        contract.functions.rebase.return_value.transact.side_effect = ValueError(
            {"code": -32000, "message": "VM Exception while processing transaction: revert"}
        )
        contract.functions.monetaryPolicy.return_value.call.return_value = DEPLOYER
        with pytest.raises(RevertFailure) as exc_info:
            web3_client.rebase(HANDLE, 1, 100, DEPLOYER)
        assert not isinstance(exc_info.value, AuthorizationFailure)
        assert "revert" in str(exc_info.value)

    def test_failed_receipt_is_revert(self, web3_client, w3):
        w3.eth.wait_for_transaction_receipt.return_value = receipt(status=0)
        with pytest.raises(RevertFailure):
            web3_client.transfer(HANDLE, DEPLOYER, USER, 10)

    def test_receipt_timeout(self, web3_client, w3):
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")
        with pytest.raises(CommunicationFailure):
            web3_client.transfer(HANDLE, DEPLOYER, USER, 10)

    def test_unauthorized_rebase(self, web3_client, contract):
        contract.functions.rebase.return_value.transact.side_effect = ContractLogicError("execution reverted")
        contract.functions.monetaryPolicy.return_value.call.return_value = DEPLOYER
        with pytest.raises(AuthorizationFailure):
            web3_client.rebase(HANDLE, 1, 100, USER)

    def test_authorized_rebase_revert(self, web3_client, contract):
        contract.functions.rebase.return_value.transact.side_effect = ContractLogicError("execution reverted")
        contract.functions.monetaryPolicy.return_value.call.return_value = DEPLOYER.lower()
        with pytest.raises(RevertFailure) as exc_info:
            web3_client.rebase(HANDLE, 1, 100, DEPLOYER)
        assert not isinstance(exc_info.value, AuthorizationFailure)

    def test_set_monetary_policy_sent_by_owner(self, web3_client, contract):
        contract.functions.owner.return_value.call.return_value = DEPLOYER
        web3_client.set_monetary_policy(HANDLE, USER)
        contract.functions.setMonetaryPolicy.assert_called_with(USER)
        contract.functions.setMonetaryPolicy.return_value.transact.assert_called_with(
            {"from": DEPLOYER, "gas": DEFAULT_GAS_LIMIT}
        )


class TestDeploy:

    def test_deploy_and_initialize(self, web3_client, w3, contract):
        w3.eth.wait_for_transaction_receipt.return_value = receipt(contract_address=HANDLE)
        handle = web3_client.deploy_ledger(DEPLOYER, "xBTC", "xBTC")
        assert handle == HANDLE
        w3.eth.contract.assert_any_call(abi=[], bytecode="0x00")
        contract.constructor.return_value.transact.assert_called_with(
            {"from": DEPLOYER, "gas": DEFAULT_GAS_LIMIT}
        )
        contract.functions.initialize.assert_called_with(DEPLOYER, "xBTC", "xBTC")

    def test_failed_deploy(self, web3_client, w3):
        w3.eth.wait_for_transaction_receipt.return_value = receipt(status=0)
        with pytest.raises(RevertFailure):
            web3_client.deploy_ledger(DEPLOYER, "xBTC", "xBTC")


class TestSnapshots:

    def test_snapshot(self, web3_client, w3):
        w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x1"}
        assert web3_client.snapshot() == "0x1"
        w3.provider.make_request.assert_called_with("evm_snapshot", [])

    def test_revert(self, web3_client, w3):
        w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 2, "result": True}
        web3_client.revert("0x1")
        w3.provider.make_request.assert_called_with("evm_revert", ["0x1"])

    def test_revert_refused(self, web3_client, w3):
        w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 2, "result": False}
        with pytest.raises(LedgerClientError):
            web3_client.revert("0x9")

    def test_rpc_error(self, web3_client, w3):
        w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "error": {"message": "no such method"}}
        with pytest.raises(CommunicationFailure):
            web3_client.snapshot()


class TestDriverOverWeb3:

    def test_rpc_revert_ends_run_violated(self, web3_client, contract):
        contract.functions.totalSupply.return_value.call.return_value = 50_000_000
        contract.functions.monetaryPolicy.return_value.call.return_value = DEPLOYER
        contract.functions.rebase.return_value.transact.side_effect = ValueError(
            {"code": -32000, "message": "VM Exception while processing transaction: revert"}
        )
        driver = SimulationDriver(web3_client, HANDLE, DEPLOYER, USER, SimulationConfig(verbose=False))
        result = driver.run()
        assert result.state is SimulationState.VIOLATED
        assert isinstance(result.error, RevertFailure)
        assert result.rounds == []
