"""
Base Schema Models for the EIP-7702 Gateway

This module defines the fundamental base classes that all other schema models
inherit from. It provides the foundation for type safety, validation, and
consistent serialization across the gateway.

Core Classes:
    - CanonicalModel: RFC8785-compliant Pydantic base model
    - BuildStatus: Outcome of assembling a delegation transaction
    - BaseBuildResult: Abstract result-style return value for build operations
    - TransactionStatus: Outcome of broadcasting a transaction
    - BaseTransactionConfirmation: Abstract transaction confirmation model

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Optional, Dict, Any
from abc import ABC
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    RFC8785-compliant Pydantic base model with canonical JSON serialization.

    Ensures a deterministic JSON representation (sorted keys, no extra
    whitespace) suitable for logging, hashing and comparing payloads.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to RFC8785-compliant canonical JSON string.

        ``model_dump(mode="json")`` converts nested models, enums and bytes to
        standard Python types; ``json.dumps`` with sorted keys and compact
        separators makes the output deterministic.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )


class BuildStatus(str, Enum):
    """
    Enumeration of possible build result statuses.

    Attributes:
        SUCCESS: Transaction assembled and ready for signing
        INVALID_INPUT: Caller supplied an invalid address, key or account pair
        SIGNING_ERROR: The authorization could not be signed
        LEDGER_ERROR: Code or nonce could not be read from the ledger
    """
    SUCCESS = "success"
    INVALID_INPUT = "invalid_input"
    SIGNING_ERROR = "signing_error"
    LEDGER_ERROR = "ledger_error"


class BaseBuildResult(CanonicalModel, ABC):
    """
    Abstract base class for result-style build return values.

    Build operations report failures through ``status`` and ``error_details``
    instead of raising, so the caller decides whether to retry the ledger
    query or abort.

    Attributes:
        status: Build result status (BuildStatus enum)
        message: Human-readable status message
        error_details: Structured error context if the build failed
        built_at: Timestamp when the build finished
    """

    status: BuildStatus = Field(..., description="Build result status")
    message: str = Field(..., description="Human-readable status message")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Detailed error information")
    built_at: datetime = Field(default_factory=datetime.now, description="Build timestamp")

    def is_success(self) -> bool:
        """
        Check if the build succeeded.

        Returns:
            bool: True if a transaction was assembled, False otherwise.
        """
        return self.status == BuildStatus.SUCCESS

    def get_error_message(self) -> Optional[str]:
        """
        Get formatted error message from the build result.

        Returns:
            Optional[str]: Error message if the build failed, None if successful.

        Example:
            result = await builder.build(...)
            if not result.is_success():
                logger.warning(result.get_error_message())
        """
        if self.is_success():
            return None

        error_msg = f"Build failed: {self.message}"
        if self.error_details:
            details_str = json.dumps(self.error_details, indent=2, default=str)
            error_msg += f"\nDetails: {details_str}"
        return error_msg


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction execution statuses.

    Attributes:
        SUCCESS: Transaction executed successfully on-chain
        FAILED: Transaction reverted or failed on-chain
        TIMEOUT: Transaction confirmation timed out
        NETWORK_ERROR: Network error during transaction submission
        INVALID_TRANSACTION: Transaction could not be built or signed
        UNKNOWN_ERROR: Unexpected error during transaction execution
    """
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_TRANSACTION = "invalid_transaction"
    UNKNOWN_ERROR = "unknown_error"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """
    Abstract base class for blockchain transaction confirmation/receipt data.

    Attributes:
        confirmation_type: Type of confirmation (e.g., "evm")
        status: Transaction execution status (TransactionStatus enum)
        execution_time: Time taken to confirm transaction (in seconds)
        confirmations: Number of block confirmations
        error_message: Error message if transaction failed
        created_at: Timestamp when confirmation was recorded
    """

    confirmation_type: str = Field(..., description="Type of confirmation (e.g., evm)")
    status: TransactionStatus = Field(..., description="Transaction execution status")
    execution_time: Optional[float] = Field(None, ge=0, description="Time to confirm (seconds)")
    confirmations: int = Field(default=0, ge=0, description="Number of block confirmations")
    error_message: Optional[str] = Field(None, description="Error message if transaction failed")
    created_at: datetime = Field(default_factory=datetime.now, description="Confirmation recording timestamp")

    def is_success(self) -> bool:
        """
        Check if transaction executed successfully on-chain.

        Returns:
            bool: True if transaction succeeded, False if failed or pending.

        Example:
            confirmation = await adapter.collect(...)
            if confirmation.is_success():
                logger.info("Collected in %s", confirmation.tx_hash)
        """
        return self.status == TransactionStatus.SUCCESS
