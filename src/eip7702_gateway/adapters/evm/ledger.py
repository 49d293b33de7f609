"""
AsyncWeb3 Ledger View

``LedgerView`` implementation backed by a JSON-RPC node through web3.py's
``AsyncWeb3``. Every RPC failure is re-raised as ``LedgerQueryError`` with
the RPC method in ``context["rpc_method"]``; nothing is retried here.

Dependencies:
    - web3.py: For blockchain RPC interaction
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3RPCError

from ...engine.exceptions import LedgerQueryError, TransactionExecutionError
from ..bases import LedgerView
from .calldata import get_balance_abi
from .constants import DEFAULT_RECEIPT_ATTEMPTS, DEFAULT_RECEIPT_POLL_INTERVAL

logger = logging.getLogger(__name__)


class Web3LedgerView(LedgerView):
    """
    Ledger view over an ``AsyncWeb3`` HTTP provider.

    Args:
        rpc_url: JSON-RPC endpoint. Ignored when ``web3`` is given.
        request_timeout: HTTP timeout in seconds.
        web3: Pre-built ``AsyncWeb3`` instance (tests inject mocks here).
        chain_id: Known chain id; saves the ``eth_chainId`` round trip.

    Example:
        ledger = Web3LedgerView(settings.resolve_rpc_url())
        nonce = await ledger.nonce_at(payment_address)
        code = await ledger.code_at(payment_address)
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        *,
        request_timeout: int = 60,
        web3: Optional[AsyncWeb3] = None,
        chain_id: Optional[int] = None,
    ):
        if web3 is None:
            if not rpc_url:
                raise ValueError("Either 'rpc_url' or 'web3' must be provided")
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": request_timeout},
            ))
        self.web3 = web3
        self.rpc_url = rpc_url
        self._chain_id = chain_id

    @classmethod
    def from_settings(cls, settings: Any, request_timeout: int = 60) -> "Web3LedgerView":
        """Build a ledger view from a :class:`GatewaySettings` instance."""
        return cls(
            settings.resolve_rpc_url(),
            request_timeout=request_timeout,
            chain_id=settings.chain_id,
        )

    async def nonce_at(self, address: str) -> int:
        address = AsyncWeb3.to_checksum_address(address)
        try:
            return int(await self.web3.eth.get_transaction_count(address, "latest"))
        except Exception as e:
            raise LedgerQueryError(
                f"Failed to read nonce: {e}",
                address=address,
                context={"rpc_method": "eth_getTransactionCount"},
            ) from e

    async def code_at(self, address: str) -> bytes:
        address = AsyncWeb3.to_checksum_address(address)
        try:
            return bytes(await self.web3.eth.get_code(address))
        except Exception as e:
            raise LedgerQueryError(
                f"Failed to read code: {e}",
                address=address,
                context={"rpc_method": "eth_getCode"},
            ) from e

    async def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(await self.web3.eth.chain_id)
            except Exception as e:
                raise LedgerQueryError(
                    f"Failed to read chain id: {e}",
                    context={"rpc_method": "eth_chainId"},
                ) from e
        return self._chain_id

    async def block_number(self) -> int:
        try:
            return int(await self.web3.eth.block_number)
        except Exception as e:
            raise LedgerQueryError(
                f"Failed to read block number: {e}",
                context={"rpc_method": "eth_blockNumber"},
            ) from e

    async def broadcast(self, raw_transaction: bytes) -> str:
        try:
            tx_hash = await self.web3.eth.send_raw_transaction(raw_transaction)
        except Web3RPCError as e:
            raise TransactionExecutionError(
                f"Node rejected transaction: {e}",
                context={"rpc_method": "eth_sendRawTransaction"},
            ) from e
        except Exception as e:
            raise LedgerQueryError(
                f"Failed to broadcast transaction: {e}",
                context={"rpc_method": "eth_sendRawTransaction"},
            ) from e
        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info("Broadcast transaction %s", tx_hash_hex)
        return tx_hash_hex

    async def wait_for_receipt(
        self,
        tx_hash: str,
        *,
        attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        attempts = DEFAULT_RECEIPT_ATTEMPTS if attempts is None else attempts
        poll_interval = DEFAULT_RECEIPT_POLL_INTERVAL if poll_interval is None else poll_interval

        for attempt in range(attempts):
            try:
                receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
                if receipt:
                    return dict(receipt)
            except TransactionNotFound:
                pass  # still pending
            except Exception as e:
                raise LedgerQueryError(
                    f"Failed to read receipt: {e}",
                    context={"rpc_method": "eth_getTransactionReceipt", "tx_hash": tx_hash},
                ) from e
            if attempt + 1 < attempts:
                await asyncio.sleep(poll_interval)

        logger.warning("No receipt for %s after %d attempts", tx_hash, attempts)
        return None

    async def token_balance(self, token: str, owner: str) -> int:
        token = AsyncWeb3.to_checksum_address(token)
        owner = AsyncWeb3.to_checksum_address(owner)
        contract = self.web3.eth.contract(address=token, abi=get_balance_abi())
        try:
            return int(await contract.functions.balanceOf(owner).call())
        except Exception as e:
            raise LedgerQueryError(
                f"Failed to read token balance: {e}",
                address=owner,
                context={"rpc_method": "eth_call", "token": token},
            ) from e
