# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
HokusaiToken contract interface and compiled artifact loading.
"""

import json
from typing import Any, Dict, List, Tuple

# ABI for HokusaiToken (subset for needed functions)
TOKEN_ABI = [
    {
        "inputs": [
            {"internalType": "string", "name": "name", "type": "string"},
            {"internalType": "string", "name": "symbol", "type": "string"},
            {"internalType": "address", "name": "controller", "type": "address"},
        ],
        "stateMutability": "nonpayable",
        "type": "constructor",
    },
    {
        "inputs": [{"internalType": "address", "name": "contributor", "type": "address"}],
        "name": "setContributor",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def load_token_artifact(path: str) -> Tuple[List[Dict[str, Any]], str]:
    """Read a hardhat artifact and return (abi, bytecode).

    Falls back to the bundled ABI subset when the artifact carries bytecode only.
    """
    with open(path) as artifact_file:
        artifact = json.load(artifact_file)
    bytecode = artifact.get("bytecode")
    if isinstance(bytecode, dict):
        # foundry layout: {"bytecode": {"object": "0x..."}}
        bytecode = bytecode.get("object")
    if not bytecode or bytecode == "0x":
        raise ValueError(f"Artifact {path} has no bytecode")
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return artifact.get("abi") or TOKEN_ABI, bytecode
