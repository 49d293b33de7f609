"""
EIP-7702 Delegation Transaction Builder

Assembles unsigned type-0x04 transactions in which a sponsor account pays gas
while a delegating account executes an implementation contract's code.

The delegating account's on-chain code decides whether a new authorization is
needed:

- empty code: *fresh*, one authorization signed with the current nonce
- ``0xef0100 || implementation``: *reuse*, empty authorization list, nothing
  is signed
- marker for another address: *overwrite*, one new authorization
- anything else (malformed): *overwrite*, logged as a warning

The authorization nonce is the delegating account's current nonce,
unincremented: in a sponsored transaction the delegating account is not the
sender, so its nonce is not bumped before authorizations are processed.
"""

import logging
from typing import Any, Dict, Optional, Union

from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address
from pydantic import ValidationError

from ...engine.exceptions import (
    InvalidDelegationStateError,
    InvalidInputError,
    LedgerQueryError,
    SigningError,
)
from ...schemas.bases import BuildStatus
from ..bases import LedgerView
from .authorizer import DelegationAuthorizer, PrivateKeyLike, load_account
from .constants import ZERO_ADDRESS
from .encoding import check_uint, parse_delegation_marker, to_data_bytes
from .schemas import (
    DelegationBuildResult,
    DelegationMode,
    DelegationStatus,
    DelegationTransaction,
    FeeParameters,
)

logger = logging.getLogger(__name__)

__all__ = [
    "DelegationTransactionBuilder",
    "inspect_delegation",
    "parse_delegation_marker",
]


def inspect_delegation(code: Union[bytes, str, None], implementation_address: str) -> DelegationStatus:
    """
    Classify the code stored at a delegating account.

    Malformed code is reported through ``is_malformed`` rather than raised,
    since the caller recovers by overwriting it.

    Example::

        status = inspect_delegation(await ledger.code_at(account), implementation)
        if status.needs_authorization:
            ...
    """
    try:
        target = parse_delegation_marker(code)
    except InvalidDelegationStateError as e:
        logger.warning("Unexpected code at delegating account: %s", e.context.get("code"))
        return DelegationStatus(has_code=True, is_malformed=True)

    if target is None:
        return DelegationStatus(has_code=False)
    return DelegationStatus(
        has_code=True,
        delegated_to=target,
        is_correct_implementation=target.lower() == implementation_address.lower(),
    )


def _resolve_address(value: Any, *, role: str) -> str:
    address = getattr(value, "address", value)
    if not isinstance(address, str) or not is_address(address):
        raise InvalidInputError(f"Invalid {role} address", address=str(address), account=role)
    return to_checksum_address(address)


def _new_transaction(**fields: Any) -> DelegationTransaction:
    try:
        return DelegationTransaction(**fields)
    except ValidationError as e:
        raise InvalidInputError(
            f"Invalid transaction fields: {e}",
            address=fields.get("to"),
            account="delegating",
        ) from e


class DelegationTransactionBuilder:
    """
    Builds sponsored EIP-7702 transactions.

    Holds no mutable state between calls, so builds for different delegating
    accounts may run concurrently. Builds for the *same* delegating account
    must be ordered by the caller, since each reads its live nonce.

    Args:
        authorizer: Signs authorization tuples. Defaults to an
            ``eth_account``-backed ``DelegationAuthorizer``.
        chain_id: Chain to build for. Read from the ledger when omitted.
        fees: Default fee parameters, overridable per ``build`` call.

    Example::

        builder = DelegationTransactionBuilder(fees=FeeParameters.from_settings(settings))
        result = await builder.build(
            sponsor=sponsor_account.address,
            delegating_account=payment_account,
            implementation_address=settings.implementation_address,
            call_data=encode_transfer_call(settings.token_address, settings.hot_wallet),
            ledger=ledger,
        )
        tx = result.unwrap()
    """

    def __init__(
        self,
        authorizer: Optional[DelegationAuthorizer] = None,
        *,
        chain_id: Optional[int] = None,
        fees: Optional[FeeParameters] = None,
    ):
        self.authorizer = authorizer or DelegationAuthorizer()
        self.chain_id = chain_id
        self.fees = fees or FeeParameters()

    async def build(
        self,
        sponsor: Union[str, LocalAccount],
        delegating_account: PrivateKeyLike,
        implementation_address: str,
        call_data: Union[bytes, str],
        ledger: LedgerView,
        *,
        value: int = 0,
        fees: Optional[FeeParameters] = None,
    ) -> DelegationBuildResult:
        """
        Build an unsigned delegation transaction for ``sponsor`` to broadcast.

        Args:
            sponsor: Sponsor address (or account) that signs and pays gas.
            delegating_account: ``LocalAccount`` or private key of the account
                whose code is delegated; it becomes the transaction's ``to``.
            implementation_address: Contract the account should delegate to.
            call_data: Calldata executed against the delegated code.
            ledger: Source of code, nonces and chain id.
            value: Wei sent with the call.
            fees: Overrides the builder's fee parameters.

        Returns:
            DelegationBuildResult: ``SUCCESS`` with the transaction, or
            ``INVALID_INPUT`` / ``SIGNING_ERROR`` / ``LEDGER_ERROR`` with
            error details. Never raises for those failures.
        """
        fields: Dict[str, Any] = {}
        try:
            sponsor_address = _resolve_address(sponsor, role="sponsor")
            fields["sponsor_address"] = sponsor_address

            account = load_account(delegating_account)
            delegating_address = account.address
            fields["delegating_address"] = delegating_address

            implementation = _resolve_address(implementation_address, role="implementation")
            if implementation == ZERO_ADDRESS:
                raise InvalidInputError(
                    "Implementation address must not be the zero address",
                    address=implementation,
                    account="implementation",
                )
            fields["implementation_address"] = implementation

            # the self-sent flow would need nonce + 1 and is not supported
            if sponsor_address == delegating_address:
                raise InvalidInputError(
                    "Sponsor must differ from the delegating account",
                    address=delegating_address,
                    account="delegating",
                )
            data = to_data_bytes(call_data)
            check_uint(value, field="value")

            code = await ledger.code_at(delegating_address)
            status = inspect_delegation(code, implementation)
            mode = status.mode
            fields["delegation_status"] = status
            fields["mode"] = mode

            chain_id = self.chain_id if self.chain_id is not None else await ledger.chain_id()
            check_uint(chain_id, field="chain_id")
            if chain_id < 1:
                raise InvalidInputError(
                    "Transaction chain id must be at least 1",
                    address=delegating_address,
                    account="delegating",
                    context={"chain_id": chain_id},
                )

            authorization_list = []
            if status.needs_authorization:
                delegating_nonce = await ledger.nonce_at(delegating_address)
                authorization_list.append(
                    self.authorizer.authorize(account, implementation, chain_id, delegating_nonce)
                )

            sponsor_nonce = await ledger.nonce_at(sponsor_address)
            fee = fees or self.fees
            transaction = _new_transaction(
                chain_id=chain_id,
                nonce=sponsor_nonce,
                max_priority_fee_per_gas=fee.max_priority_fee_per_gas,
                max_fee_per_gas=fee.max_fee_per_gas,
                gas_limit=fee.gas_limit,
                to=delegating_address,
                value=value,
                data=data,
                authorization_list=authorization_list,
                sender=sponsor_address,
            )
        except InvalidInputError as e:
            logger.info("Delegation build rejected: %s", e)
            return DelegationBuildResult.failure(BuildStatus.INVALID_INPUT, e, **fields)
        except SigningError as e:
            logger.error("Authorization signing failed: %s", e)
            return DelegationBuildResult.failure(BuildStatus.SIGNING_ERROR, e, **fields)
        except LedgerQueryError as e:
            logger.warning("Ledger query failed during build: %s", e)
            return DelegationBuildResult.failure(BuildStatus.LEDGER_ERROR, e, **fields)

        if mode == DelegationMode.OVERWRITE:
            logger.warning(
                "Overwriting delegation of %s (was %s) with %s",
                delegating_address, status.delegated_to or "malformed code", implementation,
            )
        logger.info(
            "Built %s delegation transaction: delegating=%s sponsor=%s nonce=%s authorizations=%d",
            mode.value, delegating_address, sponsor_address, sponsor_nonce, len(authorization_list),
        )
        logger.debug("Transaction payload: %s", transaction.to_canonical_json())
        return DelegationBuildResult(
            status=BuildStatus.SUCCESS,
            message=f"Delegation transaction built ({mode.value})",
            transaction=transaction,
            **fields,
        )
