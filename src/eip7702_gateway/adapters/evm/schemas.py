"""
EVM Adapter Schema Models

Pydantic models for EIP-7702 delegation and sponsored settlement. All classes
inherit from the base schema hierarchy in ``schemas.bases``.

Authorization classes:
    - AuthorizationTuple: One signed ``(chain_id, address, nonce, y_parity, r, s)``
      permission for an account to run an implementation contract's code.

Transaction classes:
    - FeeParameters: Explicit gas limit and EIP-1559 fee caps.
    - DelegationTransaction: Unsigned type-0x04 transaction assembled for a sponsor.

Delegation state classes:
    - DelegationMode: Whether a build created, reused or overwrote a delegation.
    - DelegationStatus: Decoded on-chain code of a delegating account.

Result / confirmation classes:
    - DelegationBuildResult: Result-style return value of the transaction builder.
    - EVMTransactionConfirmation: Receipt of a broadcast sponsored transaction.

Batch classes:
    - CollectionRequest: One payment address to sweep in a batch collection.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address
from pydantic import ConfigDict, Field, field_validator, model_validator

from ...engine.exceptions import (
    GatewayError,
    InvalidInputError,
    LedgerQueryError,
    SigningError,
)
from ...schemas.bases import (
    BaseBuildResult,
    BaseTransactionConfirmation,
    BuildStatus,
    CanonicalModel,
)
from .constants import (
    DEFAULT_GAS_LIMIT,
    DEFAULT_MAX_FEE_PER_GAS,
    DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
    MAX_UINT64,
    MAX_UINT256,
    SET_CODE_TX_TYPE,
)
from .encoding import (
    authorization_digest,
    encode_access_list,
    encode_set_code_transaction,
    set_code_signing_hash,
    to_address_bytes,
    to_data_bytes,
)


def _checksum_address(value: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"not a valid EVM address: {value!r}")
    return to_checksum_address(value)


class AuthorizationTuple(CanonicalModel):
    """
    Signed EIP-7702 authorization.

    Grants the signing account (the *authority*) permission to execute the
    code of ``address`` until the delegation is re-pointed. The signature
    covers ``keccak256(0x05 || rlp([chain_id, address, nonce]))``, so changing
    any of the three fields invalidates it.

    Attributes:
        chain_id: Chain the authorization is valid on; ``0`` means any chain.
        address: Implementation contract whose code is delegated to.
        nonce: Authority's account nonce the authorization is bound to.
        y_parity: Normalized recovery bit, always 0 or 1 (never 27/28).
        r: Signature r scalar.
        s: Signature s scalar.
        authority: Address that produced the signature (informational, not
            part of the wire format).

    Example::

        auth = DelegationAuthorizer().authorize(key, implementation, 421614, nonce)
        tx_fields = auth.to_rlp_list()
    """

    chain_id: int = Field(..., ge=0, le=MAX_UINT256, description="Chain id (0 = any chain)")
    address: str = Field(..., description="Implementation contract address")
    nonce: int = Field(..., ge=0, le=MAX_UINT64, description="Authority account nonce")
    y_parity: int = Field(..., description="Normalized recovery bit (0 or 1)")
    r: int = Field(..., ge=1, le=MAX_UINT256, description="Signature r scalar")
    s: int = Field(..., ge=1, le=MAX_UINT256, description="Signature s scalar")
    authority: Optional[str] = Field(None, description="Signing account address")

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        return _checksum_address(value)

    @field_validator("y_parity")
    @classmethod
    def _check_parity(cls, value: int) -> int:
        if value not in (0, 1):
            raise ValueError(f"y_parity must be normalized to 0 or 1, got {value}")
        return value

    @field_validator("authority")
    @classmethod
    def _check_authority(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _checksum_address(value)

    def digest(self) -> bytes:
        """Return the digest this authorization was signed over."""
        return authorization_digest(self.chain_id, self.address, self.nonce)

    def to_rlp_list(self) -> List[Any]:
        """Return ``[chain_id, address, nonce, y_parity, r, s]`` for RLP encoding."""
        return [
            self.chain_id,
            to_address_bytes(self.address),
            self.nonce,
            self.y_parity,
            self.r,
            self.s,
        ]

    def to_rpc_dict(self) -> Dict[str, Any]:
        """Return the JSON-RPC ``authorizationList`` entry."""
        return {
            "chainId": self.chain_id,
            "address": self.address,
            "nonce": self.nonce,
            "yParity": self.y_parity,
            "r": hex(self.r),
            "s": hex(self.s),
        }


class FeeParameters(CanonicalModel):
    """
    Gas limit and EIP-1559 fee caps of a type-0x04 transaction, in wei.

    Supplied explicitly by the caller or by :class:`GatewaySettings`; no
    estimation is performed.
    """

    gas_limit: int = Field(default=DEFAULT_GAS_LIMIT, gt=0, description="Gas limit")
    max_fee_per_gas: int = Field(default=DEFAULT_MAX_FEE_PER_GAS, ge=0, description="Max total fee per gas")
    max_priority_fee_per_gas: int = Field(
        default=DEFAULT_MAX_PRIORITY_FEE_PER_GAS, ge=0, description="Max priority fee per gas"
    )

    @model_validator(mode="after")
    def _check_caps(self) -> "FeeParameters":
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas must not exceed max_fee_per_gas")
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> "FeeParameters":
        """Build fee parameters from a :class:`GatewaySettings` instance."""
        return cls(
            gas_limit=settings.gas_limit,
            max_fee_per_gas=settings.max_fee_per_gas,
            max_priority_fee_per_gas=settings.max_priority_fee_per_gas,
        )


class DelegationTransaction(CanonicalModel):
    """
    Unsigned EIP-7702 set-code transaction (type 0x04).

    Built by :class:`DelegationTransactionBuilder` for a sponsor account:
    ``to`` is the delegating account, ``nonce`` is the sponsor's nonce, and
    ``authorization_list`` is empty when the delegation is already in place.

    Attributes:
        type: Always 4.
        chain_id: Chain the transaction is valid on.
        nonce: Sponsor account nonce.
        max_priority_fee_per_gas / max_fee_per_gas / gas_limit: Fee fields.
        to: Delegating account address (executes the delegated code).
        value: Wei sent along with the call.
        data: Calldata as 0x-prefixed hex.
        access_list: ``[(address, [storage_key, ...]), ...]``.
        authorization_list: Signed authorizations, possibly empty.
        sender: Sponsor address that must sign and broadcast (not encoded).
    """

    type: Literal[4] = Field(default=SET_CODE_TX_TYPE, description="EIP-2718 transaction type")
    chain_id: int = Field(..., ge=1, description="Chain id")
    nonce: int = Field(..., ge=0, le=MAX_UINT64, description="Sponsor nonce")
    max_priority_fee_per_gas: int = Field(..., ge=0)
    max_fee_per_gas: int = Field(..., ge=0)
    gas_limit: int = Field(..., gt=0)
    to: str = Field(..., description="Delegating account address")
    value: int = Field(default=0, ge=0, le=MAX_UINT256)
    data: str = Field(default="0x", description="Calldata (0x-prefixed hex)")
    access_list: List[Tuple[str, List[str]]] = Field(default_factory=list)
    authorization_list: List[AuthorizationTuple] = Field(default_factory=list)
    sender: str = Field(..., description="Sponsor address")

    @field_validator("to", "sender")
    @classmethod
    def _check_addresses(cls, value: str) -> str:
        return _checksum_address(value)

    @field_validator("data", mode="before")
    @classmethod
    def _normalize_data(cls, value: Any) -> str:
        return "0x" + to_data_bytes(value).hex()

    def payload(self) -> List[Any]:
        """Return the 10 unsigned payload fields in wire order."""
        return [
            self.chain_id,
            self.nonce,
            self.max_priority_fee_per_gas,
            self.max_fee_per_gas,
            self.gas_limit,
            to_address_bytes(self.to),
            self.value,
            to_data_bytes(self.data),
            encode_access_list(self.access_list),
            [auth.to_rlp_list() for auth in self.authorization_list],
        ]

    def signing_hash(self) -> bytes:
        """Hash the sponsor signs: ``keccak256(0x04 || rlp(payload))``."""
        return set_code_signing_hash(self.payload())

    def encode_signed(self, y_parity: int, r: int, s: int) -> bytes:
        """Return the broadcastable wire bytes with the sponsor signature attached."""
        return encode_set_code_transaction(self.payload(), y_parity, r, s)

    def to_rpc_dict(self) -> Dict[str, Any]:
        """Return the transaction in web3 / JSON-RPC field naming."""
        return {
            "type": self.type,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "gas": self.gas_limit,
            "from": self.sender,
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "accessList": [
                {"address": address, "storageKeys": list(keys)} for address, keys in self.access_list
            ],
            "authorizationList": [auth.to_rpc_dict() for auth in self.authorization_list],
        }


class DelegationMode(str, Enum):
    """
    How a build treated the delegating account's existing code.

    Attributes:
        FRESH: No code; a new authorization establishes the delegation.
        REUSE: Code already delegates to the implementation; no authorization.
        OVERWRITE: Code delegates elsewhere or is malformed; a new
            authorization replaces it.
    """
    FRESH = "fresh"
    REUSE = "reuse"
    OVERWRITE = "overwrite"


class DelegationStatus(CanonicalModel):
    """
    Decoded delegation state of an account.

    Attributes:
        has_code: Whether any code is stored at the account.
        delegated_to: Implementation the marker points to, if well-formed.
        is_correct_implementation: Marker points to the requested implementation.
        is_malformed: Code is present but is not a delegation marker.
    """

    has_code: bool = Field(..., description="Whether code is present at the account")
    delegated_to: Optional[str] = Field(None, description="Current delegation target")
    is_correct_implementation: bool = Field(default=False)
    is_malformed: bool = Field(default=False)

    @property
    def mode(self) -> DelegationMode:
        if not self.has_code:
            return DelegationMode.FRESH
        if self.is_correct_implementation:
            return DelegationMode.REUSE
        return DelegationMode.OVERWRITE

    @property
    def needs_authorization(self) -> bool:
        return self.mode != DelegationMode.REUSE


_STATUS_ERRORS = {
    BuildStatus.INVALID_INPUT: InvalidInputError,
    BuildStatus.SIGNING_ERROR: SigningError,
    BuildStatus.LEDGER_ERROR: LedgerQueryError,
}


class DelegationBuildResult(BaseBuildResult):
    """
    Result of :meth:`DelegationTransactionBuilder.build`.

    Failures are reported through ``status`` and ``error_details`` rather
    than raised; ``unwrap()`` converts a failed result back into the
    matching exception.

    Attributes:
        mode: Delegation handling chosen for the build, when known.
        transaction: Assembled unsigned transaction on success.
        delegation_status: Decoded on-chain code of the delegating account.
        delegating_address: Account whose code is delegated.
        sponsor_address: Account that will sign and broadcast.
        implementation_address: Requested delegation target.

    Example::

        result = await builder.build(sponsor, account, implementation, call_data, ledger)
        if result.is_success():
            raw = adapter.sign_transaction(result.transaction)
        elif result.status == BuildStatus.LEDGER_ERROR:
            ...  # retry later
    """

    mode: Optional[DelegationMode] = Field(None, description="Delegation handling")
    transaction: Optional[DelegationTransaction] = Field(None, description="Unsigned transaction")
    delegation_status: Optional[DelegationStatus] = Field(None, description="Decoded account code")
    delegating_address: Optional[str] = Field(None, description="Delegating account")
    sponsor_address: Optional[str] = Field(None, description="Sponsor account")
    implementation_address: Optional[str] = Field(None, description="Delegation target")

    @classmethod
    def failure(
        cls,
        status: BuildStatus,
        error: GatewayError,
        **fields: Any,
    ) -> "DelegationBuildResult":
        """Build a failed result carrying the error's context."""
        return cls(status=status, message=str(error), error_details=error.to_details(), **fields)

    def unwrap(self) -> DelegationTransaction:
        """
        Return the transaction, or raise the error this result records.

        Raises:
            InvalidInputError / SigningError / LedgerQueryError: Matching
                the failed ``status``.
        """
        if self.is_success() and self.transaction is not None:
            return self.transaction

        details = dict(self.error_details or {})
        details.pop("error", None)
        error_cls = _STATUS_ERRORS.get(self.status, GatewayError)
        raise error_cls(
            details.pop("message", self.message),
            address=details.pop("address", None),
            account=details.pop("account", None),
            context=details,
        )


class EVMTransactionConfirmation(BaseTransactionConfirmation):
    """
    Receipt of a sponsored type-0x04 transaction.

    Returned by :meth:`SponsorAdapter.collect`.

    Attributes:
        confirmation_type: Always "evm".
        tx_hash: Transaction hash (0x-prefixed hex, "0x" when never broadcast).
        block_number: Block number containing the transaction.
        gas_used: Actual gas consumed.
        gas_limit: Gas limit of the transaction.
        transaction_fee: Fee paid by the sponsor, in wei.
        from_address: Sponsor address.
        to_address: Delegating account address.
        delegation_mode: How the delegation was handled for this transaction.
        authorization_count: Number of authorization tuples attached.
        explorer_url: Block explorer link, when the chain is registered.
    """

    confirmation_type: Literal["evm"] = Field(default="evm", description="Confirmation type identifier")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string on EVM)")
    block_number: Optional[int] = Field(None, ge=0, description="Block number containing transaction")
    gas_used: Optional[int] = Field(None, ge=0, description="Actual gas consumed by transaction")
    gas_limit: Optional[int] = Field(None, ge=0, description="Gas limit specified for transaction")
    transaction_fee: Optional[int] = Field(None, ge=0, description="Transaction fee in wei")
    from_address: Optional[str] = Field(None, description="Transaction sender address")
    to_address: Optional[str] = Field(None, description="Transaction receiver address")
    delegation_mode: Optional[DelegationMode] = Field(None, description="Delegation handling")
    authorization_count: int = Field(default=0, ge=0, description="Attached authorizations")
    explorer_url: Optional[str] = Field(None, description="Block explorer link")


class CollectionRequest(CanonicalModel):
    """
    One payment address to sweep in :meth:`SponsorAdapter.collect_many`.

    Addresses are validated and checksummed on construction. The zero
    implementation address is well-formed here and rejected by the builder,
    so it fails its own batch item only.

    Attributes:
        delegating_account: ``LocalAccount`` or private key of the payment
            address. Never serialized.
        implementation_address: TokenTransferer contract to delegate to.
        token: Token address, or several addresses for ``transferMultiple``.
        recipient: Hot wallet receiving the tokens.
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    delegating_account: Union[str, bytes, LocalAccount] = Field(..., repr=False, exclude=True)
    implementation_address: str = Field(..., description="Delegation target")
    token: Union[str, List[str]] = Field(..., description="Token address(es) to sweep")
    recipient: str = Field(..., description="Hot wallet address")

    @field_validator("implementation_address", "recipient")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _checksum_address(value)

    @field_validator("token")
    @classmethod
    def _validate_token(cls, value: Union[str, List[str]]) -> Union[str, List[str]]:
        if isinstance(value, str):
            return _checksum_address(value)
        return [_checksum_address(token) for token in value]
