"""
EIP-7702 Authorization Signing

Produces signed authorization tuples that let an externally owned account
run the code of an implementation contract. All cryptographic operations are
performed in-process using ``eth_account`` and ``eth_keys``; no RPC calls or
on-chain state queries are made.

Exported helpers
----------------
DelegationAuthorizer
    Signs ``keccak256(0x05 || rlp([chain_id, address, nonce]))`` with the
    delegating account's key and returns an ``AuthorizationTuple``.

normalize_y_parity
    Maps a legacy ``v`` (27/28) or a raw parity (0/1) to the 0/1 value
    carried in the tuple.

recover_authority / validate_authorization
    Recover the signing account from a tuple and check it against the
    expected delegating account and chain.
"""

import logging
from typing import Callable, Optional, Tuple, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as EthKeysValidationError
from eth_utils import to_checksum_address

from ...engine.exceptions import (
    ChainMismatchError,
    InvalidInputError,
    SignatureVerificationError,
    SigningError,
)
from .constants import ANY_CHAIN_ID, MAX_UINT64, SECP256K1_N, ZERO_ADDRESS
from .encoding import authorization_digest, check_uint, to_address_bytes
from .schemas import AuthorizationTuple

logger = logging.getLogger(__name__)

#: Signing primitive: ``(digest, private_key) -> (v, r, s)``.
Signer = Callable[[bytes, bytes], Tuple[int, int, int]]

PrivateKeyLike = Union[str, bytes, LocalAccount]


def eth_account_signer(digest: bytes, private_key: bytes) -> Tuple[int, int, int]:
    """Sign a raw 32-byte digest with ``eth_account`` (returns ``v`` as 27/28)."""
    signed = Account.unsafe_sign_hash(digest, private_key)
    return signed.v, signed.r, signed.s


def normalize_y_parity(v: int) -> int:
    """
    Normalize an ECDSA recovery value to the 0/1 parity EIP-7702 expects.

    Raises:
        SigningError: If ``v`` is neither 0/1 nor 27/28.
    """
    if v in (0, 1):
        return v
    if v in (27, 28):
        return v - 27
    raise SigningError(f"Unexpected signature recovery value v={v}", context={"v": v})


def load_account(delegating_key: PrivateKeyLike) -> LocalAccount:
    """Return a ``LocalAccount`` for a key, raising SigningError if it is malformed."""
    if isinstance(delegating_key, LocalAccount):
        return delegating_key
    try:
        return Account.from_key(delegating_key)
    except (ValueError, TypeError, EthKeysValidationError) as e:
        # the key itself must never reach the message or context
        raise SigningError(f"Malformed delegating private key: {type(e).__name__}") from None


class DelegationAuthorizer:
    """
    Signs EIP-7702 authorizations for a delegating account.

    Stateless: the same ``(key, implementation, chain_id, nonce)`` always
    yields the same tuple, and no ledger access happens here. The nonce is
    supplied by the caller; in a sponsored flow it is the delegating
    account's current on-chain nonce, unincremented.

    Args:
        signer: Optional signing primitive returning ``(v, r, s)``. Defaults
            to ``eth_account``; override it to plug in an external signer.

    Example::

        authorizer = DelegationAuthorizer()
        auth = authorizer.authorize(
            payment_key,
            implementation_address="0x...",
            chain_id=421614,
            nonce=await ledger.nonce_at(payment_address),
        )
    """

    def __init__(self, signer: Optional[Signer] = None):
        self._signer = signer or eth_account_signer

    def authorize(
        self,
        delegating_key: PrivateKeyLike,
        implementation_address: str,
        chain_id: int,
        nonce: int,
    ) -> AuthorizationTuple:
        """
        Sign an authorization delegating to ``implementation_address``.

        Args:
            delegating_key: Private key (hex, bytes) or ``LocalAccount`` of
                the delegating account.
            implementation_address: Contract whose code the account will run.
            chain_id: Chain the authorization is valid on (0 = any chain).
            nonce: Delegating account nonce the authorization is bound to.

        Returns:
            AuthorizationTuple with normalized ``y_parity`` and ``authority``
            set to the delegating account address.

        Raises:
            InvalidInputError: Zero or malformed implementation address,
                chain id or nonce out of range.
            SigningError: Malformed key or signing primitive failure.
        """
        address_bytes = to_address_bytes(implementation_address, field="implementation_address")
        implementation = to_checksum_address(address_bytes)
        if implementation == ZERO_ADDRESS:
            raise InvalidInputError(
                "Implementation address must not be the zero address",
                address=implementation,
                account="implementation",
            )
        check_uint(chain_id, field="chain_id")
        check_uint(nonce, field="nonce", maximum=MAX_UINT64)

        account = load_account(delegating_key)
        digest = authorization_digest(chain_id, address_bytes, nonce)

        try:
            v, r, s = self._signer(digest, account.key)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(
                f"Signing primitive failed: {e}",
                address=implementation,
                account="implementation",
                context={"nonce": nonce, "chain_id": chain_id},
            ) from e

        try:
            y_parity = normalize_y_parity(v)
        except SigningError as e:
            e.address = implementation
            e.account = "implementation"
            e.context.update({"nonce": nonce, "chain_id": chain_id})
            raise

        for name, scalar in (("r", r), ("s", s)):
            if not isinstance(scalar, int) or isinstance(scalar, bool) or not 1 <= scalar < SECP256K1_N:
                raise SigningError(
                    f"Signer returned an out-of-range {name} scalar",
                    address=implementation,
                    account="implementation",
                    context={"nonce": nonce, "chain_id": chain_id, name: scalar},
                )

        logger.debug(
            "Signed authorization: authority=%s implementation=%s chain_id=%s nonce=%s",
            account.address, implementation, chain_id, nonce,
        )
        return AuthorizationTuple(
            chain_id=chain_id,
            address=implementation,
            nonce=nonce,
            y_parity=y_parity,
            r=r,
            s=s,
            authority=account.address,
        )


def recover_authority(authorization: AuthorizationTuple) -> str:
    """
    Recover the account that signed ``authorization``.

    Raises:
        SignatureVerificationError: If the signature is not recoverable.
    """
    try:
        signature = keys.Signature(vrs=(authorization.y_parity, authorization.r, authorization.s))
        public_key = signature.recover_public_key_from_msg_hash(authorization.digest())
    except (BadSignature, EthKeysValidationError) as e:
        raise SignatureVerificationError(
            f"Authorization signature is not recoverable: {e}",
            address=authorization.address,
            account="implementation",
        ) from e
    return public_key.to_checksum_address()


def validate_authorization(
    authorization: AuthorizationTuple,
    *,
    expected_authority: str,
    expected_chain_id: Optional[int] = None,
) -> str:
    """
    Check an authorization against the expected signer and chain.

    Args:
        authorization: Tuple to check.
        expected_authority: Delegating account that should have signed it.
        expected_chain_id: Chain the caller operates on; tuples with chain
            id 0 are accepted on any chain. Skipped when None.

    Returns:
        The recovered authority (checksum address).

    Raises:
        ChainMismatchError: Chain id is neither 0 nor ``expected_chain_id``.
        SignatureVerificationError: Recovered signer differs from
            ``expected_authority``.
    """
    if (
        expected_chain_id is not None
        and authorization.chain_id not in (ANY_CHAIN_ID, expected_chain_id)
    ):
        raise ChainMismatchError(
            f"Authorization is bound to chain {authorization.chain_id}, expected {expected_chain_id}",
            address=expected_authority,
            account="delegating",
            context={"chain_id": authorization.chain_id, "expected_chain_id": expected_chain_id},
        )

    recovered = recover_authority(authorization)
    if recovered.lower() != expected_authority.lower():
        raise SignatureVerificationError(
            "Authorization was not signed by the expected account",
            address=expected_authority,
            account="delegating",
            context={"recovered": recovered},
        )
    return recovered
