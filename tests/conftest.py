# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import json
import threading
from collections import defaultdict

import pytest
import redis

from contract_deployer.blockchain import DeploymentResult, NetworkInfo, RegistrationResult
from contract_deployer.monitoring import DeploymentMetrics
from contract_deployer.queues import EventPublisher, RedisQueueConsumer

INBOUND = "test:model_ready"
PROCESSING = "test:processing"
DLQ = "test:dlq"
OUTBOUND = "test:token_deployed"

REGISTRY_ADDRESS = "0x" + "11" * 20
MANAGER_ADDRESS = "0x" + "22" * 20
DEPLOYER_ADDRESS = "0x" + "33" * 20
TOKEN_ADDRESS = "0x" + "A" * 40
DEPLOY_TX = "0x" + "ab" * 32
REGISTER_TX = "0x" + "cd" * 32

# Well known hardhat account #0, never holds real funds
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class DummyRedis:
    """In-memory stand-in for the list commands of redis.Redis (decode_responses=True)."""

    def __init__(self):
        # index 0 is the left end
        self.lists = defaultdict(list)
        self.down = False
        self.closed = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("redis down")

    def ping(self):
        self._check()
        return True

    def close(self):
        self.closed = True

    def lpush(self, key, *values):
        self._check()
        for value in values:
            self.lists[key].insert(0, value)
        return len(self.lists[key])

    def rpush(self, key, *values):
        self._check()
        self.lists[key].extend(values)
        return len(self.lists[key])

    def brpoplpush(self, src, dst, timeout=0):
        self._check()
        if not self.lists[src]:
            # stands in for the blocking wait
            threading.Event().wait(0.01)
            return None
        value = self.lists[src].pop()
        self.lists[dst].insert(0, value)
        return value

    def lmove(self, first_list, second_list, src="LEFT", dest="RIGHT"):
        self._check()
        if not self.lists[first_list]:
            return None
        value = self.lists[first_list].pop(0 if src == "LEFT" else -1)
        if dest == "LEFT":
            self.lists[second_list].insert(0, value)
        else:
            self.lists[second_list].append(value)
        return value

    def lrem(self, key, count, value):
        self._check()
        items = self.lists[key]
        indexes = [i for i, item in enumerate(items) if item == value]
        if count < 0:
            indexes = list(reversed(indexes))[: -count]
        elif count > 0:
            indexes = indexes[:count]
        for i in sorted(indexes, reverse=True):
            del items[i]
        return len(indexes)

    def llen(self, key):
        self._check()
        return len(self.lists[key])

    def lrange(self, key, start, end):
        self._check()
        items = self.lists[key]
        size = len(items)
        start = start if start >= 0 else max(size + start, 0)
        end = end if end >= 0 else size + end
        return list(items[start : end + 1])

    def pipeline(self, transaction=True):
        return DummyPipeline(self)


class DummyPipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def __getattr__(self, name):
        def queue(*args):
            self.ops.append((name, args))
            return self

        return queue

    def execute(self):
        return [getattr(self.client, name)(*args) for name, args in self.ops]


class FakeChain:
    """Chain client double that records every write."""

    def __init__(self):
        self.registry_address = REGISTRY_ADDRESS
        self.token_manager_address = MANAGER_ADDRESS
        self.rpc_url = "http://localhost:8545"
        self.registered = {}
        self.deploy_calls = []
        self.contributors = []
        self.deploy_error = None
        self.register_error = None
        self.code = {REGISTRY_ADDRESS: b"\x60\x80", MANAGER_ADDRESS: b"\x60\x80"}
        self.balance = 10**18
        self.registry = self

    def check_model_exists(self, model_id):
        return model_id in self.registered

    def deploy(self, bytecode, constructor_args, abi=None):
        self.deploy_calls.append(constructor_args)
        if self.deploy_error is not None:
            raise self.deploy_error
        return DeploymentResult(
            token_address=TOKEN_ADDRESS,
            transaction_hash=DEPLOY_TX,
            block_number=120,
            gas_used=1_500_000,
            gas_price=2_000_000_000,
        )

    def set_contributor(self, token_address, contributor_address):
        self.contributors.append((token_address, contributor_address))
        return True

    def register_model(self, model_id, token_address, metadata):
        if self.register_error is not None:
            raise self.register_error
        self.registered[model_id] = (token_address, metadata)
        return RegistrationResult(transaction_hash=REGISTER_TX, block_number=121, gas_used=90_000)

    def get_network_info(self):
        return NetworkInfo(
            network="hardhat",
            chain_id=31337,
            deployer_address=DEPLOYER_ADDRESS,
            deployer_balance=self.balance,
            block_number=125,
        )

    def has_code(self, address):
        return bool(self.code.get(address))

    def check_health(self):
        return True


def model_ready_payload(**overrides):
    payload = {
        "model_id": "m1",
        "token_symbol": "HK1",
        "metric_name": "accuracy",
        "baseline_value": 0.80,
        "current_value": 0.828,
        "model_name": "Churn classifier",
        "model_version": "3",
        "mlflow_run_id": "run-123",
        "improvement_percentage": 3.5,
        "timestamp": "2026-01-15T10:30:00Z",
        "message_version": "1.0",
    }
    payload.update(overrides)
    return payload


def model_ready_json(**overrides):
    return json.dumps(model_ready_payload(**overrides))


@pytest.fixture()
def dummy_redis():
    return DummyRedis()


@pytest.fixture()
def metrics():
    return DeploymentMetrics(queue_ceilings={"inbound": 100, "processing": 50, "dead_letter": 10, "outbound": 1000})


@pytest.fixture()
def consumer(dummy_redis, metrics):
    return RedisQueueConsumer(
        dummy_redis,
        inbound_queue=INBOUND,
        processing_queue=PROCESSING,
        dead_letter_queue=DLQ,
        outbound_queue=OUTBOUND,
        max_retries=3,
        blocking_timeout=1,
        error_backoff=0,
        metrics=metrics,
    )


@pytest.fixture()
def publisher(dummy_redis):
    return EventPublisher(dummy_redis, OUTBOUND)


@pytest.fixture()
def fake_chain():
    return FakeChain()


@pytest.fixture()
def no_sleep(monkeypatch):
    """Record backoff sleeps instead of waiting."""
    sleeps = []
    monkeypatch.setattr("time.sleep", sleeps.append)
    return sleeps
