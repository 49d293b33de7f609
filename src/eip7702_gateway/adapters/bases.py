"""
Abstract Base Classes for Ledger Access

Defines the read/broadcast interface the delegation builder and the sponsor
adapter use to talk to a chain. Keeping it abstract lets the builder run
against a live node (``Web3LedgerView``) or an in-memory ledger in tests.

Core Classes:
    - LedgerView: Asynchronous nonce, code and chain-id queries plus raw
      transaction broadcasting.

Implementations must wrap every transport failure in ``LedgerQueryError``
(or ``TransactionExecutionError`` for broadcasting) with the RPC method in
``context["rpc_method"]``. No method retries internally.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class LedgerView(ABC):
    """
    Abstract Base Class for ledger (RPC) access.

    Key Responsibilities:
    1. nonce_at: Current transaction count of an account
    2. code_at: Code stored at an account (empty, or a delegation marker)
    3. chain_id: Chain the ledger is connected to
    4. block_number: Latest block height
    5. broadcast: Submit a signed raw transaction
    6. wait_for_receipt: Poll for the receipt of a broadcast transaction
    7. token_balance: ERC-20 balance of an owner

    Example Implementation:
        class Web3LedgerView(LedgerView):
            # AsyncWeb3-backed implementation
            pass
    """

    @abstractmethod
    async def nonce_at(self, address: str) -> int:
        """
        Return the current nonce of ``address`` (pending transactions excluded).

        Raises:
            LedgerQueryError: If the node cannot be queried.
        """

    @abstractmethod
    async def code_at(self, address: str) -> bytes:
        """
        Return the code stored at ``address``; ``b""`` for a plain account.

        Raises:
            LedgerQueryError: If the node cannot be queried.
        """

    @abstractmethod
    async def chain_id(self) -> int:
        """
        Return the chain id of the connected network.

        Raises:
            LedgerQueryError: If the node cannot be queried.
        """

    @abstractmethod
    async def block_number(self) -> int:
        """
        Return the latest block number.

        Raises:
            LedgerQueryError: If the node cannot be queried.
        """

    @abstractmethod
    async def broadcast(self, raw_transaction: bytes) -> str:
        """
        Submit a signed raw transaction.

        Returns:
            str: Transaction hash as 0x-prefixed hex.

        Raises:
            TransactionExecutionError: If the node rejects the transaction.
            LedgerQueryError: If the node cannot be reached.
        """

    @abstractmethod
    async def wait_for_receipt(
        self,
        tx_hash: str,
        *,
        attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Poll until the receipt of ``tx_hash`` is available.

        Returns:
            The receipt as a dict (``status``, ``blockNumber``, ``gasUsed``,
            ``effectiveGasPrice``, ``logs``), or None when polling timed out.

        Raises:
            LedgerQueryError: If the node cannot be queried.
        """

    @abstractmethod
    async def token_balance(self, token: str, owner: str) -> int:
        """
        Return the ERC-20 ``balanceOf(owner)`` of ``token``.

        Raises:
            LedgerQueryError: If the call fails.
        """
