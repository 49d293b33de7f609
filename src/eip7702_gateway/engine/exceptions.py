"""
Exception and Error Definitions Module

Defines the exception hierarchy for EIP-7702 authorization signing,
delegation transaction assembly, and ledger interactions. All exceptions
inherit from GatewayError for unified exception handling.

Every exception carries the address (and, where known, the account role)
that triggered it, so a caller processing a batch of sponsored transactions
can isolate the failing item without aborting the whole batch.

Exception Hierarchy:
    GatewayError (root)
    ├── InvalidInputError
    ├── SigningError
    ├── AuthorizationValidationError
    │   ├── SignatureVerificationError
    │   └── ChainMismatchError
    ├── InvalidDelegationStateError
    ├── ConfigurationError
    └── LedgerQueryError
        └── TransactionExecutionError
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Root exception class for all project-specific exceptions.

    Attributes:
        message: Human-readable description of the failure
        address: Address (account, contract or token) the failure relates to
        account: Role of the address, e.g. ``"delegating"`` or ``"sponsor"``
        context: Additional structured details (nonce, chain id, rpc method, ...)
    """

    def __init__(
        self,
        message: str,
        *,
        address: Optional[str] = None,
        account: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.address = address
        self.account = account
        self.context = dict(context or {})

    def to_details(self) -> Dict[str, Any]:
        """Return the error context as a plain dict for result objects and logs."""
        details: Dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.address is not None:
            details["address"] = self.address
        if self.account is not None:
            details["account"] = self.account
        details.update(self.context)
        return details

    def __str__(self) -> str:
        if self.address is None:
            return self.message
        role = f"{self.account} " if self.account else ""
        return f"{self.message} ({role}address {self.address})"


class InvalidInputError(GatewayError):
    """
    Raised when caller-supplied input is invalid. Never retried.

    This includes scenarios such as:
    - Zero or malformed implementation address
    - Chain id or nonce out of range
    - Sponsor address equal to the delegating account (self-sent flow)
    """
    pass


class SigningError(GatewayError):
    """
    Raised when the ECDSA signing primitive fails.

    Signing is deterministic, so retrying with the same input cannot succeed.

    This includes scenarios such as:
    - Malformed private key
    - Recovery value that is neither 0/1 nor 27/28
    """
    pass


class AuthorizationValidationError(GatewayError):
    """
    Base exception for authorization tuple validation failures.
    """
    pass


class SignatureVerificationError(AuthorizationValidationError):
    """
    Raised when the authority recovered from an authorization tuple does not
    match the expected delegating account.

    Attributes:
        context["recovered"]: Address actually recovered from the signature
    """
    pass


class ChainMismatchError(AuthorizationValidationError):
    """
    Raised when an authorization is bound to a chain other than the expected
    one. Authorizations with chain id 0 are valid on any chain.

    Attributes:
        context["expected_chain_id"]: Chain the caller is operating on
        context["chain_id"]: Chain id found in the authorization
    """
    pass


class InvalidDelegationStateError(GatewayError):
    """
    Raised when an account carries code that is neither empty nor a valid
    delegation marker (``0xef0100`` followed by a 20-byte address).

    The transaction builder recovers from this by creating a fresh
    authorization that overwrites the existing code.

    Attributes:
        context["code"]: Hex encoding of the unexpected code
    """
    pass


class ConfigurationError(GatewayError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing required environment variables
    - Unsupported chain id without an explicit RPC URL
    - Invalid fee parameters
    """
    pass


class LedgerQueryError(GatewayError):
    """
    Raised when a ledger (RPC) interaction fails.

    Re-querying a nonce or code is always safe, so callers may retry with
    backoff; this library never retries internally.

    Attributes:
        context["rpc_method"]: RPC method that was called (e.g. 'eth_getCode')
    """
    pass


class TransactionExecutionError(LedgerQueryError):
    """
    Raised when broadcasting a transaction fails or it reverts on-chain.

    Blind re-broadcasting is not safe; callers must re-read the sponsor nonce
    before retrying.

    Attributes:
        context["tx_hash"]: Transaction hash if available
    """
    pass
