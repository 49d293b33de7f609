"""
EIP-7702 Adapter Test Mocks Module

Provides mock data and utilities for testing the delegation authorizer, the
transaction builder and the sponsor adapter without blockchain connectivity.

Key Components:
    - Mock accounts (delegating / sponsor), implementation and token addresses
    - InMemoryLedger: a LedgerView that decodes broadcast type-0x04
      transactions, applies their authorizations and produces receipts
    - MockWeb3Provider: AsyncWeb3 stand-in for Web3LedgerView tests
    - Helpers to recover signers and decode wire bytes

Usage:
    from test_mocks import (
        InMemoryLedger,
        MOCK_DELEGATING_ACCOUNT,
        MOCK_IMPLEMENTATION_ADDRESS,
    )

    ledger = InMemoryLedger()
    ledger.set_code(MOCK_DELEGATING_ADDRESS, delegation_marker(MOCK_IMPLEMENTATION_ADDRESS))
"""

from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import rlp
from eth_account import Account
from eth_keys import keys
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3

# Import modules from the main codebase
import sys
from pathlib import Path
src_path = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(src_path))

from eip7702_gateway.adapters.bases import LedgerView
from eip7702_gateway.adapters.evm.encoding import (
    authorization_digest,
    encode_delegation_marker,
)


# ========================================================================
# Mock Blockchain Constants
# ========================================================================

# Test private keys (do not use in production!)
MOCK_DELEGATING_PRIVATE_KEY = "0x1234567890123456789012345678901234567890123456789012345678901234"
MOCK_SECOND_DELEGATING_PRIVATE_KEY = "0x" + "22" * 32
MOCK_SPONSOR_PRIVATE_KEY = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcd"

MOCK_DELEGATING_ACCOUNT = Account.from_key(MOCK_DELEGATING_PRIVATE_KEY)
MOCK_SECOND_DELEGATING_ACCOUNT = Account.from_key(MOCK_SECOND_DELEGATING_PRIVATE_KEY)
MOCK_SPONSOR_ACCOUNT = Account.from_key(MOCK_SPONSOR_PRIVATE_KEY)

MOCK_DELEGATING_ADDRESS = MOCK_DELEGATING_ACCOUNT.address
MOCK_SECOND_DELEGATING_ADDRESS = MOCK_SECOND_DELEGATING_ACCOUNT.address
MOCK_SPONSOR_ADDRESS = MOCK_SPONSOR_ACCOUNT.address

# Contracts
MOCK_IMPLEMENTATION_ADDRESS = to_checksum_address("0x" + "abcd" * 10)
MOCK_OTHER_IMPLEMENTATION_ADDRESS = to_checksum_address("0x" + "1234" * 10)
MOCK_TOKEN_ADDRESS = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"
MOCK_SECOND_TOKEN_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
MOCK_HOT_WALLET = to_checksum_address("0x" + "77" * 20)

# Chain
MOCK_CHAIN_ID = 421614  # Arbitrum Sepolia

# Transaction and block data
MOCK_BLOCK_NUMBER = 12345678
MOCK_GAS_PRICE = 1_000_000_000
MOCK_GAS_USED = 65000
MOCK_TX_HASH = "0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"
MOCK_TOKEN_BALANCE = 100_000_000

# Known authorization digests: keccak256(0x05 || rlp([chain_id, 0xabcd...abcd, nonce]))
DIGEST_VECTOR_CHAIN_421614_NONCE_5 = "0x787d6aac0a551cc2335a0b8b6b9535947116d45971df777f1db0844bdf7e758a"
DIGEST_VECTOR_CHAIN_0_NONCE_0 = "0x1cb86ab1518ac309deb98a9d267efbf73777e00df634a21c7e9f0f0ff6d65ec8"
RLP_VECTOR_CHAIN_421614_NONCE_5 = "da83066eee94" + "abcd" * 10 + "05"

# Some deployed bytecode: code that is not a delegation marker
MOCK_CONTRACT_BYTECODE = bytes.fromhex("6080604052348015600f57600080fd5b50")


def delegation_marker(address: str) -> bytes:
    """Code an account carries while delegated to ``address``."""
    return encode_delegation_marker(address)


# ========================================================================
# Wire decoding helpers
# ========================================================================

def _int(value: bytes) -> int:
    return int.from_bytes(value, "big")


def recover_signer(msg_hash: bytes, y_parity: int, r: int, s: int) -> str:
    """Recover the checksum address that signed ``msg_hash``."""
    signature = keys.Signature(vrs=(y_parity, r, s))
    return signature.recover_public_key_from_msg_hash(msg_hash).to_checksum_address()


def decode_set_code_transaction(raw: bytes) -> Dict[str, Any]:
    """
    Decode ``0x04 || rlp([...13 fields])`` into a dict, recovering the sender
    and the authority of every authorization.
    """
    assert raw[0] == 0x04, "not a set-code transaction"
    fields = rlp.decode(raw[1:])
    assert len(fields) == 13

    authorizations = []
    for chain_id, address, nonce, y_parity, r, s in fields[9]:
        digest = authorization_digest(_int(chain_id), address, _int(nonce))
        authorizations.append({
            "chain_id": _int(chain_id),
            "address": to_checksum_address(address),
            "nonce": _int(nonce),
            "y_parity": _int(y_parity),
            "r": _int(r),
            "s": _int(s),
            "authority": recover_signer(digest, _int(y_parity), _int(r), _int(s)),
        })

    signing_hash = keccak(b"\x04" + rlp.encode(fields[:10]))
    return {
        "chain_id": _int(fields[0]),
        "nonce": _int(fields[1]),
        "max_priority_fee_per_gas": _int(fields[2]),
        "max_fee_per_gas": _int(fields[3]),
        "gas_limit": _int(fields[4]),
        "to": to_checksum_address(fields[5]),
        "value": _int(fields[6]),
        "data": fields[7],
        "access_list": fields[8],
        "authorization_list": authorizations,
        "y_parity": _int(fields[10]),
        "r": _int(fields[11]),
        "s": _int(fields[12]),
        "sender": recover_signer(signing_hash, _int(fields[10]), _int(fields[11]), _int(fields[12])),
    }


# ========================================================================
# In-memory ledger
# ========================================================================

class InMemoryLedger(LedgerView):
    """
    LedgerView backed by dictionaries.

    Broadcasting decodes the wire bytes, bumps the sender nonce and applies
    each authorization (bumping the authority nonce and writing the
    delegation marker), the way a node processes a type-0x04 transaction.

    Attributes:
        codes: Code per checksum address
        nonces: Nonce per checksum address
        broadcasts: Decoded transactions in broadcast order
        calls: ``(method, argument)`` log of every query
        fail_on: Exceptions to raise per method name
        receipt_status: ``status`` of produced receipts (1 success, 0 reverted)
        drop_receipts: When True, ``wait_for_receipt`` times out
    """

    def __init__(
        self,
        chain_id: int = MOCK_CHAIN_ID,
        codes: Optional[Dict[str, bytes]] = None,
        nonces: Optional[Dict[str, int]] = None,
        fail_on: Optional[Dict[str, Exception]] = None,
        receipt_status: int = 1,
        drop_receipts: bool = False,
        token_balance: int = MOCK_TOKEN_BALANCE,
    ):
        self._chain_id = chain_id
        self.codes = {to_checksum_address(a): c for a, c in (codes or {}).items()}
        self.nonces = {to_checksum_address(a): n for a, n in (nonces or {}).items()}
        self.fail_on = dict(fail_on or {})
        self.receipt_status = receipt_status
        self.drop_receipts = drop_receipts
        self._token_balance = token_balance
        self.broadcasts: List[Dict[str, Any]] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Any]] = []

    def _record(self, method: str, argument: Any = None) -> None:
        self.calls.append((method, argument))
        if method in self.fail_on:
            raise self.fail_on[method]

    def set_code(self, address: str, code: bytes) -> None:
        self.codes[to_checksum_address(address)] = code

    def set_nonce(self, address: str, nonce: int) -> None:
        self.nonces[to_checksum_address(address)] = nonce

    async def nonce_at(self, address: str) -> int:
        self._record("nonce_at", address)
        return self.nonces.get(to_checksum_address(address), 0)

    async def code_at(self, address: str) -> bytes:
        self._record("code_at", address)
        return self.codes.get(to_checksum_address(address), b"")

    async def chain_id(self) -> int:
        self._record("chain_id")
        return self._chain_id

    async def block_number(self) -> int:
        self._record("block_number")
        return MOCK_BLOCK_NUMBER + 2

    async def broadcast(self, raw_transaction: bytes) -> str:
        self._record("broadcast", raw_transaction)
        tx = decode_set_code_transaction(raw_transaction)
        self.broadcasts.append(tx)

        self.nonces[tx["sender"]] = self.nonces.get(tx["sender"], 0) + 1
        for auth in tx["authorization_list"]:
            authority = auth["authority"]
            if auth["nonce"] == self.nonces.get(authority, 0):
                self.codes[authority] = delegation_marker(auth["address"])
                self.nonces[authority] = auth["nonce"] + 1

        tx_hash = "0x" + keccak(raw_transaction).hex()
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": MOCK_BLOCK_NUMBER,
            "status": self.receipt_status,
            "gasUsed": MOCK_GAS_USED,
            "effectiveGasPrice": MOCK_GAS_PRICE,
            "from": tx["sender"],
            "to": tx["to"],
            "logs": [],
        }
        return tx_hash

    async def wait_for_receipt(self, tx_hash, *, attempts=None, poll_interval=None):
        self._record("wait_for_receipt", tx_hash)
        if self.drop_receipts:
            return None
        return self.receipts.get(tx_hash)

    async def token_balance(self, token: str, owner: str) -> int:
        self._record("token_balance", (token, owner))
        return self._token_balance


# ========================================================================
# Mock Web3 Provider
# ========================================================================

async def _resolved(value: Any) -> Any:
    return value


class MockEth:
    """
    Mock ``AsyncWeb3.eth`` namespace.

    ``chain_id`` and ``block_number`` are awaitable properties on AsyncWeb3,
    so they are exposed as properties returning fresh coroutines.
    """

    def __init__(
        self,
        chain_id: int = MOCK_CHAIN_ID,
        block_number: int = MOCK_BLOCK_NUMBER,
        tx_count: int = 0,
        code: bytes = b"",
        balance: int = MOCK_TOKEN_BALANCE,
    ):
        self._chain_id = chain_id
        self._block_number = block_number
        self.chain_id_reads = 0

        self.get_transaction_count = AsyncMock(return_value=tx_count)
        self.get_code = AsyncMock(return_value=code)
        self.send_raw_transaction = AsyncMock(return_value=bytes.fromhex(MOCK_TX_HASH[2:]))
        self.get_transaction_receipt = AsyncMock(return_value={
            "transactionHash": MOCK_TX_HASH,
            "blockNumber": block_number,
            "status": 1,
            "gasUsed": MOCK_GAS_USED,
            "effectiveGasPrice": MOCK_GAS_PRICE,
            "logs": [],
        })

        balance_call = Mock()
        balance_call.call = AsyncMock(return_value=balance)
        self.contract_functions = Mock()
        self.contract_functions.balanceOf = Mock(return_value=balance_call)
        contract = Mock()
        contract.functions = self.contract_functions
        self.contract = Mock(return_value=contract)

    @property
    def chain_id(self):
        self.chain_id_reads += 1
        return _resolved(self._chain_id)

    @property
    def block_number(self):
        return _resolved(self._block_number)


class MockWeb3Provider:
    """
    Mock AsyncWeb3 instance for Web3LedgerView tests.

    Example:
        web3 = MockWeb3Provider(tx_count=3)
        ledger = Web3LedgerView(web3=web3)
    """

    def __init__(self, **eth_kwargs: Any):
        self.eth = MockEth(**eth_kwargs)

    @staticmethod
    def to_checksum_address(address: str) -> str:
        return AsyncWeb3.to_checksum_address(address)
