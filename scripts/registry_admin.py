#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Manual ModelRegistry operations for the deployer wallet.

A token that was deployed but whose registration failed is left orphaned. Register it
by hand once the cause is fixed, instead of letting the pipeline deploy a second token.

Usage:
    python scripts/registry_admin.py balance
    python scripts/registry_admin.py lookup <model_id>
    python scripts/registry_admin.py register <model_id> <token_address> <metric_name> <mlflow_run_id>
"""

import sys

from dotenv import load_dotenv
from web3 import Web3

from contract_deployer.blockchain import ChainClient, RegistrationMetadata
from contract_deployer.errors import DeployerError
from contract_deployer.logger import configure_logging


def print_usage():
    print("Usage:")
    print("  python registry_admin.py balance")
    print("  python registry_admin.py lookup <model_id>")
    print("  python registry_admin.py register <model_id> <token_address> <metric_name> <mlflow_run_id>")


def lookup(chain: ChainClient, model_id: str) -> int:
    info = chain.registry.get_model_info(model_id)
    if info is None:
        print(f"⚠️  Model {model_id} is not registered")
        return 1
    print(f"📋 {model_id}")
    print(f"   Token: {info.token_address}")
    print(f"   Metric: {info.metric_name}")
    print(f"   MLflow run: {info.mlflow_run_id}")
    print(f"   Registered: {info.registration_time.isoformat()}")
    print(f"   Active: {info.is_active}")
    return 0


def register(chain: ChainClient, model_id: str, token_address: str, metric_name: str, mlflow_run_id: str) -> int:
    if not Web3.is_address(token_address):
        print(f"❌ Not an address: {token_address}")
        return 1
    if chain.check_model_exists(model_id):
        print(f"⚠️  Model {model_id} already registered!")
        return 1
    if not chain.has_code(token_address):
        print(f"❌ No contract code at {token_address}")
        return 1

    metadata = RegistrationMetadata(metric_name=metric_name, mlflow_run_id=mlflow_run_id)
    gas = chain.registry.estimate_registration_gas(model_id, token_address, metadata)
    print(f"📝 Registering {model_id} -> {token_address} (estimated gas {gas})")
    result = chain.register_model(model_id, token_address, metadata)
    print(f"   ✅ Registered in block {result.block_number} (tx {result.transaction_hash})")
    return 0


def main() -> int:
    if len(sys.argv) < 2:
        print_usage()
        return 1

    load_dotenv()
    configure_logging(level="WARNING")
    command = sys.argv[1]

    try:
        chain = ChainClient.from_config()
    except DeployerError as e:
        print(f"❌ {e}")
        return 1
    network = chain.get_network_info()
    print(f"✅ Connected to {network.network} (Chain ID: {network.chain_id}) via {chain.rpc_url}")
    print(f"📍 Wallet: {network.deployer_address}")
    print(f"💰 Balance: {Web3.from_wei(network.deployer_balance, 'ether')} ETH")

    if command == "balance":
        return 0

    print(f"📋 ModelRegistry: {chain.registry_address}")
    try:
        if command == "lookup" and len(sys.argv) == 3:
            return lookup(chain, sys.argv[2])
        if command == "register" and len(sys.argv) == 6:
            return register(chain, *sys.argv[2:6])
    except DeployerError as e:
        print(f"❌ {e}")
        return 1

    print_usage()
    return 1


if __name__ == "__main__":
    sys.exit(main())
