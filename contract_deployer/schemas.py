# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Wire formats exchanged over the Redis queues.

ModelReadyMessage is pushed by the ML pipeline onto the inbound queue.
TokenDeployedEvent is pushed by this service onto the outbound queue.
DeadLetterEntry wraps anything that could not be processed.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contract_deployer.errors import InvalidMessageError

ETH_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
ETH_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
TOKEN_SYMBOL_PATTERN = r"^[A-Z0-9\-]{1,10}$"

SUPPORTED_MESSAGE_VERSIONS = ("1.0",)
TOKEN_NAME_PREFIX = "Hokusai"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ModelReadyMessage(BaseModel):
    """A model that passed evaluation and needs a token."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, protected_namespaces=())

    model_id: str = Field(min_length=1)
    token_symbol: str = Field(pattern=TOKEN_SYMBOL_PATTERN)
    metric_name: str = Field(min_length=1)
    baseline_value: float = Field(gt=0)
    current_value: float = Field(gt=0)
    model_name: str = Field(min_length=1)
    model_version: str = Field(min_length=1)
    mlflow_run_id: str = Field(min_length=1)
    improvement_percentage: float = Field(gt=0)
    contributor_address: Optional[str] = Field(default=None, pattern=ETH_ADDRESS_PATTERN)
    experiment_name: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    timestamp: str
    message_version: str
    retry_count: int = Field(default=0, ge=0, alias="_retryCount")

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as err:
            raise ValueError(f"timestamp is not ISO-8601: {value}") from err
        return value

    @field_validator("message_version")
    @classmethod
    def _known_version(cls, value: str) -> str:
        if value not in SUPPORTED_MESSAGE_VERSIONS:
            raise ValueError(f"unsupported message_version {value!r}")
        return value

    @property
    def token_name(self) -> str:
        return f"{TOKEN_NAME_PREFIX} {self.model_id}"


def parse_model_ready_message(raw: str) -> ModelReadyMessage:
    """Parse and validate a raw inbound payload.

    Raises InvalidMessageError with reason "invalid payload" when the payload is not a
    JSON object, or with the schema error text when validation fails.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as err:
        raise InvalidMessageError("invalid payload", raw) from err
    if not isinstance(payload, dict):
        raise InvalidMessageError("invalid payload", raw)
    try:
        return ModelReadyMessage.model_validate(payload)
    except ValidationError as err:
        raise InvalidMessageError(_describe_validation_error(err), raw) from err


def _describe_validation_error(err: ValidationError) -> str:
    problems = []
    for error in err.errors():
        location = ".".join(str(part) for part in error["loc"]) or "message"
        problems.append(f"{location}: {error['msg']}")
    return "schema validation failed: " + "; ".join(problems)


class EventMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    source: Optional[str] = None
    published_at: Optional[str] = Field(default=None, alias="publishedAt")


class TokenDeployedEvent(BaseModel):
    """Completion event for downstream consumers. Built once, never mutated."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    event_type: Literal["token_deployed"] = "token_deployed"
    model_id: str = Field(min_length=1)
    token_address: str = Field(pattern=ETH_ADDRESS_PATTERN)
    token_symbol: str = Field(pattern=TOKEN_SYMBOL_PATTERN)
    token_name: str = Field(min_length=1)
    transaction_hash: str = Field(pattern=ETH_HASH_PATTERN)
    registry_transaction_hash: str = Field(pattern=ETH_HASH_PATTERN)
    mlflow_run_id: str
    model_name: str
    model_version: str
    deployment_timestamp: str = Field(default_factory=utc_now_iso)
    deployer_address: str = Field(pattern=ETH_ADDRESS_PATTERN)
    network: str
    block_number: int = Field(gt=0)
    gas_used: str = Field(pattern=r"^\d+$")
    gas_price: str = Field(pattern=r"^\d+$")
    contributor_address: Optional[str] = Field(default=None, pattern=ETH_ADDRESS_PATTERN)
    performance_metric: str
    performance_improvement: float = Field(gt=0)
    message_version: Literal["1.0"] = "1.0"
    metadata: Optional[EventMetadata] = Field(default=None, alias="_metadata")

    def with_metadata(self, correlation_id: str = None, source: str = None) -> "TokenDeployedEvent":
        """Return a copy carrying publish metadata."""
        metadata = EventMetadata(correlation_id=correlation_id, source=source, published_at=utc_now_iso())
        return self.model_copy(update={"metadata": metadata})

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class DeadLetterEntry(BaseModel):
    """Write-once record of a message the pipeline gave up on."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    original_message: Any = Field(alias="originalMessage")
    error: str
    timestamp: str = Field(default_factory=utc_now_iso)
    queue: str

    @classmethod
    def wrap(cls, raw: str, reason: str, queue: str) -> "DeadLetterEntry":
        """Keep the original message as parsed JSON when possible, raw text otherwise."""
        try:
            original = json.loads(raw)
        except (TypeError, ValueError):
            original = raw
        return cls(original_message=original, error=reason, queue=queue)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
