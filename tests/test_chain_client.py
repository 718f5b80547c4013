# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from unittest.mock import MagicMock

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from contract_deployer.blockchain import ChainClient, is_transient_error
from contract_deployer.errors import DeploymentError, NoRpcEndpointError, TransientChainError

from conftest import MANAGER_ADDRESS, REGISTRY_ADDRESS, TEST_PRIVATE_KEY

GWEI = 10**9
TX_HASH = b"\x01" * 32
CONTRACT_ADDRESS = "0x" + "aa" * 20


def make_web3(block_number=100):
    web3 = MagicMock()
    web3.eth.get_block_number.return_value = block_number
    web3.eth.block_number = block_number + 10
    web3.eth.chain_id = 31337
    web3.eth.gas_price = 10 * GWEI
    web3.eth.estimate_gas.return_value = 100_000
    web3.eth.get_transaction_count.return_value = 7
    web3.eth.get_balance.return_value = 2 * 10**18
    web3.eth.send_raw_transaction.return_value = TX_HASH
    web3.eth.wait_for_transaction_receipt.return_value = receipt()
    web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("unknown transaction")
    web3.eth.contract.return_value.constructor.return_value.data_in_transaction = "0x6080604052"
    return web3


def receipt(status=1, block_number=100):
    return {
        "status": status,
        "blockNumber": block_number,
        "contractAddress": CONTRACT_ADDRESS,
        "transactionHash": TX_HASH,
        "gasUsed": 1_234_567,
        "effectiveGasPrice": 10 * GWEI,
    }


def make_client(web3=None, **kwargs):
    web3 = web3 or make_web3()
    kwargs.setdefault("max_gas_price_wei", 100 * GWEI)
    kwargs.setdefault("retry_delay", 2.0)
    return ChainClient(
        rpc_urls=["http://rpc-1"],
        private_key=TEST_PRIVATE_KEY,
        registry_address=REGISTRY_ADDRESS,
        token_manager_address=MANAGER_ADDRESS,
        poll_interval=0,
        web3_factory=lambda url: web3,
        **kwargs,
    )


@pytest.mark.parametrize(
    "err, expected",
    [
        (TimeExhausted("receipt not found"), True),
        (ValueError({"message": "replacement transaction underpriced"}), True),
        (ValueError("nonce too low"), True),
        (ConnectionError("reset by peer"), True),
        (TransientChainError("confirmation timeout"), True),
        (ContractLogicError("execution reverted: timeout"), False),
        (ValueError("insufficient funds for gas * price + value"), False),
    ],
)
def test_is_transient_error(err, expected):
    assert is_transient_error(err) is expected


def test_resolves_first_reachable_endpoint():
    dead = MagicMock()
    dead.eth.get_block_number.side_effect = ConnectionError("refused")
    alive = make_web3()
    endpoints = {"http://dead": dead, "http://alive": alive}

    client = ChainClient(
        rpc_urls=["http://dead", "http://alive"],
        private_key=TEST_PRIVATE_KEY,
        registry_address=REGISTRY_ADDRESS,
        token_manager_address=MANAGER_ADDRESS,
        web3_factory=endpoints.__getitem__,
    )

    assert client.rpc_url == "http://alive"
    assert client.web3 is alive


def test_no_reachable_endpoint_raises():
    dead = MagicMock()
    dead.eth.get_block_number.side_effect = ConnectionError("refused")
    with pytest.raises(NoRpcEndpointError) as excinfo:
        make_client(web3=dead)
    assert excinfo.value.candidates == ["http://rpc-1"]


def test_gas_price_is_capped():
    web3 = make_web3()
    web3.eth.gas_price = 500 * GWEI
    client = make_client(web3)
    assert client.get_gas_price() == 100 * GWEI

    web3.eth.gas_price = 3 * GWEI
    assert client.get_gas_price() == 3 * GWEI


def test_deploy_submits_capped_gas_and_scaled_limit(monkeypatch):
    web3 = make_web3()
    web3.eth.gas_price = 500 * GWEI
    client = make_client(web3, gas_multiplier=1.5)
    sent = []

    def fake_send(transaction, state):
        sent.append(transaction)
        return receipt()

    monkeypatch.setattr(client, "_sign_and_send", fake_send)
    client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert sent[0]["gasPrice"] == 100 * GWEI
    assert sent[0]["gas"] == 150_000
    assert sent[0]["data"] == "0x6080604052"


def test_deploy_signs_and_waits_for_confirmations():
    web3 = make_web3()
    client = make_client(web3, confirmations=3)

    result = client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert result.token_address.lower() == CONTRACT_ADDRESS
    assert result.transaction_hash == "0x" + "01" * 32
    assert result.block_number == 100
    assert result.gas_used == 1_234_567
    assert result.gas_price == 10 * GWEI
    web3.eth.send_raw_transaction.assert_called_once()
    web3.eth.get_transaction_count.assert_called_with(client.address, "pending")


def test_transient_error_retried_with_linear_backoff(no_sleep):
    web3 = make_web3()
    web3.eth.send_raw_transaction.side_effect = [
        ValueError("replacement transaction underpriced"),
        ValueError("nonce too low"),
        TX_HASH,
    ]
    client = make_client(web3, max_attempts=3, retry_delay=2.0)

    result = client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert result.block_number == 100
    assert no_sleep == [2.0, 4.0]


def test_retries_exhausted_raise_deployment_error(no_sleep):
    web3 = make_web3()
    web3.eth.send_raw_transaction.side_effect = ValueError("request timed out")
    client = make_client(web3, max_attempts=3)

    with pytest.raises(DeploymentError) as excinfo:
        client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert excinfo.value.attempts == 3
    assert "timed out" in str(excinfo.value)
    assert web3.eth.send_raw_transaction.call_count == 3


def test_permanent_error_not_retried(no_sleep):
    web3 = make_web3()
    web3.eth.estimate_gas.side_effect = ContractLogicError("execution reverted")
    client = make_client(web3)

    with pytest.raises(DeploymentError) as excinfo:
        client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert excinfo.value.attempts == 1
    assert no_sleep == []
    web3.eth.send_raw_transaction.assert_not_called()


def test_retry_reuses_receipt_of_broadcast_transaction(no_sleep):
    web3 = make_web3()
    web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined yet")
    web3.eth.get_transaction_receipt.side_effect = lambda tx_hash: receipt()
    client = make_client(web3)

    result = client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert result.transaction_hash == "0x" + "01" * 32
    web3.eth.send_raw_transaction.assert_called_once()


class RecordingSigner:
    def __init__(self, account):
        self.account = account
        self.signed = []

    @property
    def address(self):
        return self.account.address

    def sign_transaction(self, transaction):
        self.signed.append(dict(transaction))
        return self.account.sign_transaction(transaction)


def test_unmined_deployment_is_replaced_at_same_nonce(no_sleep):
    web3 = make_web3()
    web3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("not mined yet"), receipt()]
    # The first transaction is pending, so the node's pending count has moved on
    web3.eth.get_transaction_count.side_effect = [7, 8]
    client = make_client(web3)
    signer = client._account = RecordingSigner(client._account)

    result = client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    assert result.block_number == 100
    assert [tx["nonce"] for tx in signer.signed] == [7, 7]
    assert signer.signed[1]["gasPrice"] == int(10 * GWEI * 1.125)
    web3.eth.get_transaction_count.assert_called_once()


def test_replacement_never_exceeds_gas_cap(no_sleep):
    web3 = make_web3()
    web3.eth.gas_price = 95 * GWEI
    web3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("not mined yet"), receipt()]
    client = make_client(web3, max_gas_price_wei=100 * GWEI)
    signer = client._account = RecordingSigner(client._account)

    client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])

    # 100 gwei is not a valid replacement for 95 gwei, so the first broadcast is awaited again
    assert len(signer.signed) == 1
    waited = [c.args[0] for c in web3.eth.wait_for_transaction_receipt.call_args_list]
    assert waited[0] == waited[1]


def test_pending_broadcast_is_resumed_by_the_next_call(no_sleep):
    web3 = make_web3()
    web3.eth.gas_price = 100 * GWEI
    web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined yet")
    client = make_client(web3, max_attempts=2)
    args = ["Hokusai m1", "HK1", MANAGER_ADDRESS]

    with pytest.raises(DeploymentError):
        client.deploy("0x6080", args)

    web3.eth.get_transaction_receipt.side_effect = lambda tx_hash: receipt()
    result = client.deploy("0x6080", args)

    assert result.token_address.lower() == CONTRACT_ADDRESS
    web3.eth.send_raw_transaction.assert_called_once()
    web3.eth.get_transaction_count.assert_called_once()


def test_reverted_deployment_is_permanent(no_sleep):
    web3 = make_web3()
    web3.eth.wait_for_transaction_receipt.return_value = receipt(status=0)
    client = make_client(web3)

    with pytest.raises(DeploymentError):
        client.deploy("0x6080", ["Hokusai m1", "HK1", MANAGER_ADDRESS])
    assert no_sleep == []


def test_network_info_and_code():
    web3 = make_web3()
    web3.eth.get_code.return_value = b""
    client = make_client(web3)

    info = client.get_network_info()
    assert info.network == "hardhat"
    assert info.chain_id == 31337
    assert info.deployer_address == client.address
    assert info.deployer_balance == 2 * 10**18
    assert client.has_code(REGISTRY_ADDRESS) is False


def test_set_contributor_failure_is_reported_not_raised(no_sleep):
    web3 = make_web3()
    client = make_client(web3)
    token = web3.eth.contract.return_value
    token.functions.setContributor.return_value.estimate_gas.side_effect = ContractLogicError("execution reverted")

    assert client.set_contributor(CONTRACT_ADDRESS, "0x" + "44" * 20) is False
