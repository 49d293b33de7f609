"""
EIP-7702 Encoding Helpers

RLP and keccak-256 helpers shared by the authorizer and the transaction
builder:

authorization_digest
    ``keccak256(0x05 || rlp([chain_id, address, nonce]))``, the message a
    delegating account signs.

parse_delegation_marker / encode_delegation_marker
    The 23-byte ``0xef0100 || address`` code an account carries while
    delegated.

encode_set_code_transaction / set_code_signing_hash
    Type-0x04 wire format::

        0x04 || rlp([chain_id, nonce, max_priority_fee_per_gas, max_fee_per_gas,
                     gas_limit, to, value, data, access_list,
                     authorization_list, y_parity, r, s])

Integers are RLP-encoded as minimal big-endian byte strings (``0`` encodes as
the empty string), addresses as raw 20 bytes.
"""

from typing import Any, List, Optional, Sequence, Tuple, Union

import rlp
from eth_utils import is_hex, keccak, to_bytes, to_checksum_address

from ...engine.exceptions import InvalidDelegationStateError, InvalidInputError
from .constants import (
    AUTHORIZATION_MAGIC,
    DELEGATION_MARKER_LENGTH,
    DELEGATION_MARKER_PREFIX,
    MAX_UINT64,
    MAX_UINT256,
    SET_CODE_TX_TYPE,
)

AddressLike = Union[str, bytes]
AccessList = Sequence[Tuple[AddressLike, Sequence[Union[str, bytes]]]]


def to_address_bytes(address: AddressLike, *, field: str = "address") -> bytes:
    """
    Convert a hex or raw address into its 20 canonical bytes.

    Raises:
        InvalidInputError: If ``address`` is not exactly 20 bytes of hex.
    """
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    elif isinstance(address, str) and is_hex(address):
        raw = to_bytes(hexstr=address)
    else:
        raise InvalidInputError(f"{field} must be a hex string or bytes", address=str(address))

    if len(raw) != 20:
        raise InvalidInputError(
            f"{field} must be 20 bytes, got {len(raw)}",
            address=str(address),
        )
    return raw


def to_data_bytes(data: Union[str, bytes, None]) -> bytes:
    """Convert calldata given as ``0x`` hex or bytes into bytes."""
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if data in ("", "0x"):
        return b""
    if not is_hex(data):
        raise InvalidInputError(f"calldata is not valid hex: {data[:20]!r}")
    return to_bytes(hexstr=data)


def check_uint(value: int, *, field: str, maximum: int = MAX_UINT256) -> int:
    """Reject negative, non-integer or oversized integer fields."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise InvalidInputError(f"{field} out of range: {value}")
    return value


# ---------------------------------------------------------------------------
# Authorization digest
# ---------------------------------------------------------------------------

def authorization_payload(chain_id: int, address: AddressLike, nonce: int) -> bytes:
    """Return ``rlp([chain_id, address, nonce])`` for an authorization tuple."""
    check_uint(chain_id, field="chain_id")
    check_uint(nonce, field="nonce", maximum=MAX_UINT64)
    return rlp.encode([chain_id, to_address_bytes(address), nonce])


def authorization_digest(chain_id: int, address: AddressLike, nonce: int) -> bytes:
    """
    Compute the EIP-7702 authorization digest.

    Example::

        digest = authorization_digest(421614, "0x" + "ab" * 20, 5)
        assert len(digest) == 32
    """
    return keccak(AUTHORIZATION_MAGIC + authorization_payload(chain_id, address, nonce))


# ---------------------------------------------------------------------------
# Delegation marker
# ---------------------------------------------------------------------------

def encode_delegation_marker(address: AddressLike) -> bytes:
    """Return the code an account carries while delegated to ``address``."""
    return DELEGATION_MARKER_PREFIX + to_address_bytes(address)


def parse_delegation_marker(code: Union[bytes, str, None]) -> Optional[str]:
    """
    Decode the code stored at an account.

    Returns:
        None when the account has no code, otherwise the checksum address
        the account is delegated to.

    Raises:
        InvalidDelegationStateError: If code is present but is not exactly
            ``0xef0100`` followed by a 20-byte address.
    """
    raw = to_data_bytes(code)
    if not raw:
        return None

    if len(raw) != DELEGATION_MARKER_LENGTH or not raw.startswith(DELEGATION_MARKER_PREFIX):
        raise InvalidDelegationStateError(
            f"code is not a delegation marker ({len(raw)} bytes)",
            context={"code": "0x" + raw.hex()},
        )
    return to_checksum_address(raw[len(DELEGATION_MARKER_PREFIX):])


# ---------------------------------------------------------------------------
# Type-0x04 transaction
# ---------------------------------------------------------------------------

def encode_access_list(access_list: Optional[AccessList]) -> List[List[Any]]:
    """Convert ``[(address, [storage_key, ...]), ...]`` to its RLP list form."""
    encoded = []
    for address, storage_keys in access_list or []:
        keys = []
        for key in storage_keys:
            key_bytes = to_data_bytes(key)
            if len(key_bytes) != 32:
                raise InvalidInputError(f"storage key must be 32 bytes, got {len(key_bytes)}")
            keys.append(key_bytes)
        encoded.append([to_address_bytes(address, field="access list address"), keys])
    return encoded


def set_code_signing_hash(payload: List[Any]) -> bytes:
    """
    Hash signed by the transaction sender:
    ``keccak256(0x04 || rlp(payload))`` with the 10 unsigned fields.
    """
    return keccak(bytes([SET_CODE_TX_TYPE]) + rlp.encode(payload))


def encode_set_code_transaction(payload: List[Any], y_parity: int, r: int, s: int) -> bytes:
    """Append the sender signature to ``payload`` and return the wire bytes."""
    if y_parity not in (0, 1):
        raise InvalidInputError(f"transaction y_parity must be 0 or 1, got {y_parity}")
    return bytes([SET_CODE_TX_TYPE]) + rlp.encode(list(payload) + [y_parity, r, s])
