"""
SponsorAdapter Test Suite

Covers sponsor signing of type-0x04 transactions, single and batch
collection, and the mapping of build / broadcast / receipt failures to
confirmation statuses. Uses the in-memory ledger from test_mocks, which
decodes and applies every broadcast transaction.
"""

import pytest
from pydantic import ValidationError
from unittest.mock import AsyncMock

from test_mocks import (
    InMemoryLedger,
    MOCK_BLOCK_NUMBER,
    MOCK_CHAIN_ID,
    MOCK_DELEGATING_ACCOUNT,
    MOCK_DELEGATING_ADDRESS,
    MOCK_DELEGATING_PRIVATE_KEY,
    MOCK_GAS_PRICE,
    MOCK_GAS_USED,
    MOCK_HOT_WALLET,
    MOCK_IMPLEMENTATION_ADDRESS,
    MOCK_OTHER_IMPLEMENTATION_ADDRESS,
    MOCK_SECOND_DELEGATING_ACCOUNT,
    MOCK_SECOND_DELEGATING_ADDRESS,
    MOCK_SECOND_TOKEN_ADDRESS,
    MOCK_SPONSOR_ADDRESS,
    MOCK_SPONSOR_PRIVATE_KEY,
    MOCK_TOKEN_ADDRESS,
    MOCK_TOKEN_BALANCE,
    decode_set_code_transaction,
    delegation_marker,
)

from eip7702_gateway.adapters.evm.adapter import CollectionRequest, SponsorAdapter
from eip7702_gateway.adapters.evm.calldata import encode_transfer_call, encode_transfer_multiple_call
from eip7702_gateway.adapters.evm.constants import ZERO_ADDRESS
from eip7702_gateway.adapters.evm.schemas import (
    DelegationMode,
    DelegationTransaction,
    EVMTransactionConfirmation,
    FeeParameters,
)
from eip7702_gateway.engine.exceptions import (
    InvalidInputError,
    LedgerQueryError,
    TransactionExecutionError,
)
from eip7702_gateway.schemas.bases import TransactionStatus


# ========================================================================
# Test Fixtures
# ========================================================================

@pytest.fixture
def ledger():
    return InMemoryLedger(nonces={MOCK_SPONSOR_ADDRESS: 4})


@pytest.fixture
def adapter(ledger):
    return SponsorAdapter(MOCK_SPONSOR_PRIVATE_KEY, ledger, receipt_attempts=1, poll_interval=0)


async def collect(adapter, account=MOCK_DELEGATING_ACCOUNT, implementation=MOCK_IMPLEMENTATION_ADDRESS,
                  token=MOCK_TOKEN_ADDRESS):
    return await adapter.collect(account, implementation, token, MOCK_HOT_WALLET)


def sweep_request(account, implementation=MOCK_IMPLEMENTATION_ADDRESS, token=MOCK_TOKEN_ADDRESS):
    return CollectionRequest(
        delegating_account=account,
        implementation_address=implementation,
        token=token,
        recipient=MOCK_HOT_WALLET,
    )


# ========================================================================
# Test Classes
# ========================================================================

class TestSponsorAdapterInitialization:

    def test_init_with_private_key(self, ledger):
        adapter = SponsorAdapter(MOCK_SPONSOR_PRIVATE_KEY, ledger)
        assert adapter.address == MOCK_SPONSOR_ADDRESS

    def test_init_without_private_key_raises(self, ledger):
        with pytest.raises(ValueError, match="Sponsor private key not provided"):
            SponsorAdapter("", ledger)

    def test_chain_id_and_fees_reach_builder(self, ledger):
        fees = FeeParameters(gas_limit=120_000, max_fee_per_gas=10, max_priority_fee_per_gas=1)
        adapter = SponsorAdapter(MOCK_SPONSOR_PRIVATE_KEY, ledger, fees, chain_id=1)
        assert adapter.builder.chain_id == 1
        assert adapter.builder.fees == fees


class TestSignTransaction:

    @pytest.mark.asyncio
    async def test_wire_bytes_decode_and_recover_sponsor(self, adapter, ledger):
        tx = (await adapter.builder.build(
            MOCK_SPONSOR_ADDRESS,
            MOCK_DELEGATING_ACCOUNT,
            MOCK_IMPLEMENTATION_ADDRESS,
            encode_transfer_call(MOCK_TOKEN_ADDRESS, MOCK_HOT_WALLET),
            ledger,
        )).unwrap()

        raw = adapter.sign_transaction(tx)
        decoded = decode_set_code_transaction(raw)

        assert raw[0] == 0x04
        assert decoded["sender"] == MOCK_SPONSOR_ADDRESS
        assert decoded["chain_id"] == MOCK_CHAIN_ID
        assert decoded["nonce"] == 4
        assert decoded["to"] == MOCK_DELEGATING_ADDRESS
        assert decoded["gas_limit"] == tx.gas_limit
        assert decoded["data"] == encode_transfer_call(MOCK_TOKEN_ADDRESS, MOCK_HOT_WALLET)
        assert decoded["y_parity"] in (0, 1)
        [auth] = decoded["authorization_list"]
        assert auth["authority"] == MOCK_DELEGATING_ADDRESS
        assert auth["address"] == MOCK_IMPLEMENTATION_ADDRESS
        assert auth["y_parity"] == tx.authorization_list[0].y_parity

    def test_refuses_foreign_sender(self, adapter):
        tx = DelegationTransaction(
            chain_id=MOCK_CHAIN_ID,
            nonce=0,
            max_priority_fee_per_gas=1,
            max_fee_per_gas=2,
            gas_limit=21000,
            to=MOCK_DELEGATING_ADDRESS,
            sender=MOCK_SECOND_DELEGATING_ADDRESS,
        )
        with pytest.raises(InvalidInputError) as exc_info:
            adapter.sign_transaction(tx)
        assert exc_info.value.account == "sponsor"

    def test_rpc_dict(self, adapter):
        tx = DelegationTransaction(
            chain_id=MOCK_CHAIN_ID,
            nonce=3,
            max_priority_fee_per_gas=1,
            max_fee_per_gas=2,
            gas_limit=21000,
            to=MOCK_DELEGATING_ADDRESS,
            data=b"\x01\x02",
            sender=MOCK_SPONSOR_ADDRESS,
        )
        rpc = tx.to_rpc_dict()
        assert rpc["type"] == 4
        assert rpc["gas"] == 21000
        assert rpc["data"] == "0x0102"
        assert rpc["authorizationList"] == []


class TestCollect:

    @pytest.mark.asyncio
    async def test_fresh_collection(self, adapter, ledger):
        confirmation = await collect(adapter)

        assert confirmation.is_success()
        assert confirmation.delegation_mode == DelegationMode.FRESH
        assert confirmation.authorization_count == 1
        assert confirmation.from_address == MOCK_SPONSOR_ADDRESS
        assert confirmation.to_address == MOCK_DELEGATING_ADDRESS
        assert confirmation.block_number == MOCK_BLOCK_NUMBER
        assert confirmation.confirmations == 2
        assert confirmation.transaction_fee == MOCK_GAS_USED * MOCK_GAS_PRICE
        assert confirmation.explorer_url == f"https://sepolia.arbiscan.io/tx/{confirmation.tx_hash}"
        assert ledger.codes[MOCK_DELEGATING_ADDRESS] == delegation_marker(MOCK_IMPLEMENTATION_ADDRESS)

    @pytest.mark.asyncio
    async def test_delegation_lifecycle(self, adapter, ledger):
        first = await collect(adapter)
        second = await collect(adapter)
        third = await collect(adapter, implementation=MOCK_OTHER_IMPLEMENTATION_ADDRESS)

        assert [c.delegation_mode for c in (first, second, third)] == [
            DelegationMode.FRESH,
            DelegationMode.REUSE,
            DelegationMode.OVERWRITE,
        ]
        assert second.authorization_count == 0
        assert [tx["nonce"] for tx in ledger.broadcasts] == [4, 5, 6]
        # the authorization consumed nonce 0, so the overwrite signs nonce 1
        assert ledger.broadcasts[2]["authorization_list"][0]["nonce"] == 1
        assert ledger.codes[MOCK_DELEGATING_ADDRESS] == delegation_marker(MOCK_OTHER_IMPLEMENTATION_ADDRESS)

    @pytest.mark.asyncio
    async def test_multiple_tokens(self, adapter, ledger):
        confirmation = await collect(adapter, token=[MOCK_TOKEN_ADDRESS, MOCK_SECOND_TOKEN_ADDRESS])
        assert confirmation.is_success()
        assert ledger.broadcasts[0]["data"] == encode_transfer_multiple_call(
            [MOCK_TOKEN_ADDRESS, MOCK_SECOND_TOKEN_ADDRESS], MOCK_HOT_WALLET
        )

    @pytest.mark.asyncio
    async def test_reverted(self, ledger):
        ledger.receipt_status = 0
        adapter = SponsorAdapter(MOCK_SPONSOR_PRIVATE_KEY, ledger, receipt_attempts=1, poll_interval=0)
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.FAILED
        assert confirmation.error_message == "Transaction reverted on-chain"

    @pytest.mark.asyncio
    async def test_timeout(self, ledger, adapter):
        ledger.drop_receipts = True
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.TIMEOUT
        assert confirmation.tx_hash != "0x"

    @pytest.mark.asyncio
    async def test_rejected_broadcast(self, ledger, adapter):
        ledger.fail_on["broadcast"] = TransactionExecutionError("nonce too low")
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.FAILED
        assert "nonce too low" in confirmation.error_message

    @pytest.mark.asyncio
    async def test_broadcast_network_error(self, ledger, adapter):
        ledger.fail_on["broadcast"] = LedgerQueryError("connection reset")
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.NETWORK_ERROR
        assert confirmation.tx_hash == "0x"

    @pytest.mark.asyncio
    async def test_receipt_network_error(self, ledger, adapter):
        ledger.fail_on["wait_for_receipt"] = LedgerQueryError("gateway timeout")
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.NETWORK_ERROR
        assert confirmation.tx_hash.startswith("0x") and len(confirmation.tx_hash) == 66

    @pytest.mark.asyncio
    async def test_ledger_error_during_build(self, ledger, adapter):
        ledger.fail_on["code_at"] = LedgerQueryError("503")
        confirmation = await collect(adapter)
        assert confirmation.status == TransactionStatus.NETWORK_ERROR
        assert ledger.broadcasts == []

    @pytest.mark.asyncio
    async def test_invalid_token(self, adapter, ledger):
        confirmation = await collect(adapter, token="0x1234")
        assert confirmation.status == TransactionStatus.INVALID_TRANSACTION
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_sponsor_as_delegating_account(self, adapter, ledger):
        confirmation = await collect(adapter, account=MOCK_SPONSOR_PRIVATE_KEY)
        assert confirmation.status == TransactionStatus.INVALID_TRANSACTION
        assert ledger.broadcasts == []


class TestCollectionRequest:

    def test_addresses_are_checksummed(self):
        request = sweep_request(
            MOCK_DELEGATING_PRIVATE_KEY,
            implementation=MOCK_IMPLEMENTATION_ADDRESS.lower(),
            token=[MOCK_TOKEN_ADDRESS.lower(), MOCK_SECOND_TOKEN_ADDRESS],
        )

        assert request.implementation_address == MOCK_IMPLEMENTATION_ADDRESS
        assert request.token == [MOCK_TOKEN_ADDRESS, MOCK_SECOND_TOKEN_ADDRESS]

    def test_accepts_local_account(self):
        assert sweep_request(MOCK_DELEGATING_ACCOUNT).delegating_account is MOCK_DELEGATING_ACCOUNT

    def test_malformed_token_rejected(self):
        with pytest.raises(ValidationError):
            sweep_request(MOCK_DELEGATING_ACCOUNT, token="0x1234")

    def test_malformed_recipient_rejected(self):
        with pytest.raises(ValidationError):
            CollectionRequest(
                delegating_account=MOCK_DELEGATING_ACCOUNT,
                implementation_address=MOCK_IMPLEMENTATION_ADDRESS,
                token=MOCK_TOKEN_ADDRESS,
                recipient="hot-wallet",
            )

    def test_key_never_serialized(self):
        request = sweep_request(MOCK_DELEGATING_PRIVATE_KEY)

        assert MOCK_DELEGATING_PRIVATE_KEY not in request.to_canonical_json()
        assert MOCK_DELEGATING_PRIVATE_KEY not in repr(request)


class TestCollectMany:

    @pytest.mark.asyncio
    async def test_failing_item_does_not_abort_batch(self, adapter, ledger):
        requests = [
            sweep_request(MOCK_DELEGATING_PRIVATE_KEY),
            sweep_request(MOCK_SECOND_DELEGATING_ACCOUNT, implementation=ZERO_ADDRESS),
            sweep_request(MOCK_SECOND_DELEGATING_ACCOUNT),
        ]

        confirmations = await adapter.collect_many(requests)

        assert [c.status for c in confirmations] == [
            TransactionStatus.SUCCESS,
            TransactionStatus.INVALID_TRANSACTION,
            TransactionStatus.SUCCESS,
        ]
        assert [tx["to"] for tx in ledger.broadcasts] == [MOCK_DELEGATING_ADDRESS, MOCK_SECOND_DELEGATING_ADDRESS]
        assert [tx["nonce"] for tx in ledger.broadcasts] == [4, 5]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self, adapter):
        success = EVMTransactionConfirmation(status=TransactionStatus.SUCCESS, tx_hash="0x" + "11" * 32)
        adapter.collect = AsyncMock(side_effect=[RuntimeError("boom"), success])
        requests = [
            sweep_request(MOCK_DELEGATING_ACCOUNT),
            sweep_request(MOCK_SECOND_DELEGATING_ACCOUNT),
        ]

        confirmations = await adapter.collect_many(requests)

        assert confirmations[0].status == TransactionStatus.UNKNOWN_ERROR
        assert "RuntimeError: boom" in confirmations[0].error_message
        assert confirmations[1].is_success()


class TestTokenBalance:

    @pytest.mark.asyncio
    async def test_get_token_balance(self, adapter, ledger):
        balance = await adapter.get_token_balance(MOCK_TOKEN_ADDRESS, MOCK_DELEGATING_ADDRESS)
        assert balance == MOCK_TOKEN_BALANCE
        assert ledger.calls[-1] == ("token_balance", (MOCK_TOKEN_ADDRESS, MOCK_DELEGATING_ADDRESS))
