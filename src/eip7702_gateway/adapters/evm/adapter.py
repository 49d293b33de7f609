"""
EVM Sponsor Adapter

Server-side settlement for sponsored EIP-7702 token collection: the gateway's
sponsor account pays gas for a type-0x04 transaction in which a user payment
address runs the TokenTransferer implementation and sweeps its tokens to the
hot wallet.

Key Features:
    - Builds delegation transactions (fresh, reuse or overwrite)
    - Signs them with the sponsor key
    - Broadcasts and polls for the receipt
    - Batch collection that isolates failing payment addresses

Dependencies:
    - web3.py / eth_account: Transaction signing and RPC interaction
"""

import logging
import time
from typing import Iterable, List, Optional, Sequence, Union

from eth_account import Account

from ...logging_config import log_collection
from ...engine.exceptions import (
    InvalidInputError,
    LedgerQueryError,
    TransactionExecutionError,
)
from ...schemas.bases import BuildStatus, TransactionStatus
from ..bases import LedgerView
from .authorizer import PrivateKeyLike, normalize_y_parity
from .builder import DelegationTransactionBuilder
from .calldata import encode_transfer_call, encode_transfer_multiple_call
from .constants import DEFAULT_RECEIPT_ATTEMPTS, DEFAULT_RECEIPT_POLL_INTERVAL, get_chain_config
from .schemas import (
    CollectionRequest,
    DelegationTransaction,
    EVMTransactionConfirmation,
    FeeParameters,
)

logger = logging.getLogger(__name__)


class SponsorAdapter:
    """
    Sponsor-side EIP-7702 settlement.

    The sponsor key signs the outer transaction only; authorizations are
    signed with each payment address's own key by the builder.

    Attributes:
        account: Sponsor ``LocalAccount``.
        address: Checksum sponsor address.
        ledger: Ledger used for queries and broadcasting.
        builder: Delegation transaction builder.

    Example:
        settings = load_gateway_settings()
        ledger = Web3LedgerView.from_settings(settings)
        adapter = SponsorAdapter(
            settings.sponsor_private_key,
            ledger,
            FeeParameters.from_settings(settings),
        )
        confirmation = await adapter.collect(
            settings.payment_private_key,
            settings.implementation_address,
            settings.token_address,
            settings.hot_wallet,
        )
        if confirmation.is_success():
            logger.info("Collected in %s", confirmation.tx_hash)
    """

    def __init__(
        self,
        private_key: str,
        ledger: LedgerView,
        fees: Optional[FeeParameters] = None,
        chain_id: Optional[int] = None,
        *,
        builder: Optional[DelegationTransactionBuilder] = None,
        receipt_attempts: int = DEFAULT_RECEIPT_ATTEMPTS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    ):
        if not private_key:
            raise ValueError("Sponsor private key not provided")

        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.ledger = ledger
        self.fees = fees or FeeParameters()
        self.builder = builder or DelegationTransactionBuilder(chain_id=chain_id, fees=self.fees)
        self._receipt_attempts = receipt_attempts
        self._poll_interval = poll_interval

    def sign_transaction(self, transaction: DelegationTransaction) -> bytes:
        """
        Sign a built transaction with the sponsor key.

        Returns:
            bytes: Broadcastable ``0x04 || rlp(...)`` wire bytes.

        Raises:
            InvalidInputError: If the transaction was built for another sponsor.
        """
        if transaction.sender != self.address:
            raise InvalidInputError(
                "Transaction was built for a different sponsor",
                address=transaction.sender,
                account="sponsor",
            )
        signed = self.account.unsafe_sign_hash(transaction.signing_hash())
        return transaction.encode_signed(normalize_y_parity(signed.v), signed.r, signed.s)

    async def collect(
        self,
        delegating_account: PrivateKeyLike,
        implementation_address: str,
        token: Union[str, Sequence[str]],
        recipient: str,
    ) -> EVMTransactionConfirmation:
        """
        Sweep ``token`` from a payment address to ``recipient``.

        Builds the delegation transaction, signs it with the sponsor key,
        broadcasts it and waits for the receipt.

        Args:
            delegating_account: ``LocalAccount`` or private key of the payment address.
            implementation_address: TokenTransferer contract to delegate to.
            token: Token address, or a list for ``transferMultiple``.
            recipient: Hot wallet address.

        Returns:
            :class:`EVMTransactionConfirmation`. No exceptions are raised for
            build, signing or ledger failures; they are reported through
            ``status`` (``INVALID_TRANSACTION``, ``NETWORK_ERROR``,
            ``FAILED`` or ``TIMEOUT``).
        """
        try:
            if isinstance(token, str):
                call_data = encode_transfer_call(token, recipient)
            else:
                call_data = encode_transfer_multiple_call(list(token), recipient)
        except InvalidInputError as e:
            return EVMTransactionConfirmation(
                status=TransactionStatus.INVALID_TRANSACTION,
                tx_hash="0x",
                error_message=str(e),
            )

        result = await self.builder.build(
            self.address,
            delegating_account,
            implementation_address,
            call_data,
            self.ledger,
            fees=self.fees,
        )
        if not result.is_success():
            status = (
                TransactionStatus.NETWORK_ERROR
                if result.status == BuildStatus.LEDGER_ERROR
                else TransactionStatus.INVALID_TRANSACTION
            )
            return EVMTransactionConfirmation(
                status=status,
                tx_hash="0x",
                to_address=result.delegating_address,
                from_address=self.address,
                delegation_mode=result.mode,
                error_message=result.message,
            )

        transaction = result.transaction
        confirmation = await self._send_and_confirm(transaction, self.sign_transaction(transaction))
        confirmation.delegation_mode = result.mode
        return confirmation

    async def collect_many(self, requests: Iterable[CollectionRequest]) -> List[EVMTransactionConfirmation]:
        """
        Run :meth:`collect` for each request, one after another.

        Every item consumes the next sponsor nonce, so items are never sent
        concurrently. A failing item is reported in its confirmation and the
        batch continues.
        """
        confirmations = []
        for index, request in enumerate(requests):
            try:
                confirmation = await self.collect(
                    request.delegating_account,
                    request.implementation_address,
                    request.token,
                    request.recipient,
                )
            except Exception as e:
                logger.exception("Batch item %d raised unexpectedly", index)
                confirmation = EVMTransactionConfirmation(
                    status=TransactionStatus.UNKNOWN_ERROR,
                    tx_hash="0x",
                    error_message=f"{type(e).__name__}: {e}",
                )
            log_collection(
                logger,
                confirmation.to_address or f"item {index}",
                confirmation.delegation_mode.value if confirmation.delegation_mode else None,
                confirmation.status.value,
                tx_hash=confirmation.tx_hash,
                error=confirmation.error_message,
            )
            confirmations.append(confirmation)
        return confirmations

    async def get_token_balance(self, token: str, owner: str) -> int:
        """
        Query the ERC-20 balance of ``owner``.

        Raises:
            LedgerQueryError: If the balance cannot be read.
        """
        return await self.ledger.token_balance(token, owner)

    async def _send_and_confirm(
        self,
        transaction: DelegationTransaction,
        raw_transaction: bytes,
    ) -> EVMTransactionConfirmation:
        """
        Broadcast a signed transaction and poll for its on-chain receipt.

        Returns:
            :class:`EVMTransactionConfirmation` with receipt data on success,
            or a ``TIMEOUT`` / ``NETWORK_ERROR`` / ``FAILED`` result.
        """
        common = {
            "gas_limit": transaction.gas_limit,
            "from_address": transaction.sender,
            "to_address": transaction.to,
            "authorization_count": len(transaction.authorization_list),
        }
        started = time.monotonic()

        try:
            tx_hash = await self.ledger.broadcast(raw_transaction)
        except TransactionExecutionError as e:
            return EVMTransactionConfirmation(
                status=TransactionStatus.FAILED,
                tx_hash="0x",
                error_message=f"Transaction rejected: {e}",
                **common,
            )
        except LedgerQueryError as e:
            return EVMTransactionConfirmation(
                status=TransactionStatus.NETWORK_ERROR,
                tx_hash="0x",
                error_message=f"Failed to broadcast transaction: {e}",
                **common,
            )

        chain = get_chain_config(transaction.chain_id)
        common["explorer_url"] = chain.tx_url(tx_hash) if chain else None

        try:
            receipt = await self.ledger.wait_for_receipt(
                tx_hash,
                attempts=self._receipt_attempts,
                poll_interval=self._poll_interval,
            )
            current_block = await self.ledger.block_number() if receipt else None
        except LedgerQueryError as e:
            return EVMTransactionConfirmation(
                status=TransactionStatus.NETWORK_ERROR,
                tx_hash=tx_hash,
                error_message=f"Failed to confirm transaction: {e}",
                **common,
            )

        if not receipt:
            return EVMTransactionConfirmation(
                status=TransactionStatus.TIMEOUT,
                tx_hash=tx_hash,
                error_message="Transaction confirmation timed out",
                **common,
            )

        block_number = receipt["blockNumber"]
        gas_used = receipt["gasUsed"]
        fields = dict(
            tx_hash=tx_hash,
            block_number=block_number,
            gas_used=gas_used,
            confirmations=max(current_block - block_number, 0),
            transaction_fee=gas_used * receipt.get("effectiveGasPrice", 0),
            execution_time=time.monotonic() - started,
            **common,
        )

        if receipt.get("status") == 1:
            logger.info("Collection confirmed: %s (block %s)", tx_hash, block_number)
            return EVMTransactionConfirmation(status=TransactionStatus.SUCCESS, **fields)

        logger.warning("Collection reverted: %s", tx_hash)
        return EVMTransactionConfirmation(
            status=TransactionStatus.FAILED,
            error_message="Transaction reverted on-chain",
            **fields,
        )
