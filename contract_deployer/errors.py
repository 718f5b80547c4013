# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Exception taxonomy for the deployment pipeline.

Unprocessable messages never leave the consumer. Transient chain errors are retried
inside the chain client. Pipeline errors go back to the consumer's per-message retry
counter. Infrastructure errors abort startup.
"""


class DeployerError(Exception):
    """Base class for every error raised by the service."""


class InvalidMessageError(DeployerError):
    """Inbound payload could not be parsed or failed schema validation."""

    def __init__(self, reason: str, raw: str = None):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class TransientChainError(DeployerError):
    """RPC timeout, fee underpricing or a nonce race. Safe to retry."""


class TransactionRevertedError(DeployerError):
    """A mined transaction came back with status 0."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


class PipelineError(DeployerError):
    """Fatal for the current attempt of a message, retried at message level."""

    stage = "pipeline"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class DeploymentError(PipelineError):
    stage = "deployment"


class RegistrationError(PipelineError):
    stage = "registration"


class DuplicateRegistrationError(RegistrationError):
    """The registry already holds a mapping for this model id."""

    def __init__(self, model_id: str):
        super().__init__(f"Model {model_id} already registered", attempts=1)
        self.model_id = model_id


class PublishError(PipelineError):
    stage = "publish"


class InfrastructureError(DeployerError):
    """Aborts startup. Never handled per message."""


class NoRpcEndpointError(InfrastructureError):
    def __init__(self, candidates):
        super().__init__(f"Failed to connect to any RPC endpoint ({len(candidates)} candidates tried)")
        self.candidates = list(candidates)


class BrokerUnavailableError(InfrastructureError):
    pass


class ConfigurationError(InfrastructureError):
    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        super().__init__("Invalid configuration: " + "; ".join(problems))
        self.problems = list(problems)
