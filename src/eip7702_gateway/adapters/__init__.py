from .bases import LedgerView
from .evm import (
    SponsorAdapter,
    DelegationAuthorizer,
    DelegationTransactionBuilder,
    Web3LedgerView,
    AuthorizationTuple,
    DelegationTransaction,
    DelegationBuildResult,
    EVMTransactionConfirmation,
)

__all__ = [
    "LedgerView",
    "SponsorAdapter",
    "DelegationAuthorizer",
    "DelegationTransactionBuilder",
    "Web3LedgerView",
    "AuthorizationTuple",
    "DelegationTransaction",
    "DelegationBuildResult",
    "EVMTransactionConfirmation",
]
