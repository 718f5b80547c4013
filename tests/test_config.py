# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import json

import pytest

from contract_deployer.blockchain import BlockchainConfig
from contract_deployer.blockchain.token import TOKEN_ABI, load_token_artifact
from contract_deployer.config import QueueConfig, ServiceConfig
from contract_deployer.errors import ConfigurationError

from conftest import MANAGER_ADDRESS, REGISTRY_ADDRESS, TEST_PRIVATE_KEY


@pytest.fixture()
def valid_env(monkeypatch, tmp_path):
    artifact = tmp_path / "token.json"
    artifact.write_text(json.dumps({"abi": [], "bytecode": "0x6080"}))
    monkeypatch.setenv("DEPLOYER_PRIVATE_KEY", TEST_PRIVATE_KEY)
    monkeypatch.setenv("MODEL_REGISTRY_ADDRESS", REGISTRY_ADDRESS)
    monkeypatch.setenv("TOKEN_MANAGER_ADDRESS", MANAGER_ADDRESS)
    monkeypatch.setenv("RPC_URLS", "http://a, http://b")
    monkeypatch.setenv("TOKEN_ARTIFACT_PATH", str(artifact))
    return monkeypatch


def test_defaults(monkeypatch):
    for name in ("REDIS_URL", "INBOUND_QUEUE", "DLQ_NAME", "MAX_RETRIES", "MAX_GAS_PRICE_GWEI", "REDIS_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    assert QueueConfig.get_inbound_queue() == "hokusai:model_ready_queue"
    assert QueueConfig.get_dead_letter_queue() == "hokusai:dlq"
    assert QueueConfig.get_max_retries() == 3
    assert BlockchainConfig.get_max_gas_price_wei() == 100 * 10**9


def test_redis_url_built_from_parts(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_HOST", "cache")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("REDIS_PASSWORD", "secret")
    monkeypatch.setenv("REDIS_DB", "2")
    assert QueueConfig.get_redis_url() == "redis://:secret@cache:6380/2"


def test_rpc_urls_are_ordered(valid_env):
    assert BlockchainConfig.get_rpc_urls() == ["http://a", "http://b"]


def test_valid_configuration_passes(valid_env):
    assert ServiceConfig.validate() == []
    ServiceConfig.ensure_valid()


def test_every_problem_is_reported(valid_env):
    valid_env.delenv("DEPLOYER_PRIVATE_KEY")
    valid_env.setenv("MODEL_REGISTRY_ADDRESS", "0x123")
    valid_env.setenv("CONFIRMATION_BLOCKS", "0")
    valid_env.setenv("TOKEN_ARTIFACT_PATH", "/does/not/exist.json")

    with pytest.raises(ConfigurationError) as excinfo:
        ServiceConfig.ensure_valid()

    problems = excinfo.value.problems
    assert len(problems) == 4
    assert any("DEPLOYER_PRIVATE_KEY" in p for p in problems)
    assert any("MODEL_REGISTRY_ADDRESS" in p for p in problems)


def test_load_token_artifact_layouts(tmp_path):
    hardhat = tmp_path / "hardhat.json"
    hardhat.write_text(json.dumps({"abi": [{"type": "constructor"}], "bytecode": "0x6080"}))
    foundry = tmp_path / "foundry.json"
    foundry.write_text(json.dumps({"bytecode": {"object": "6080"}}))
    empty = tmp_path / "empty.json"
    empty.write_text(json.dumps({"abi": [], "bytecode": "0x"}))

    assert load_token_artifact(str(hardhat)) == ([{"type": "constructor"}], "0x6080")
    assert load_token_artifact(str(foundry)) == (TOKEN_ABI, "0x6080")
    with pytest.raises(ValueError):
        load_token_artifact(str(empty))


def test_shutdown_timeout_covers_one_message_of_chain_work(monkeypatch):
    monkeypatch.delenv("SHUTDOWN_TIMEOUT_SECONDS", raising=False)
    monkeypatch.setenv("DEPLOYMENT_TIMEOUT_SECONDS", "300")
    monkeypatch.setenv("DEPLOY_MAX_ATTEMPTS", "3")
    assert ServiceConfig.get_shutdown_timeout() == 3 * 2 * 300 * 3

    monkeypatch.setenv("SHUTDOWN_TIMEOUT_SECONDS", "120")
    assert ServiceConfig.get_shutdown_timeout() == 120
