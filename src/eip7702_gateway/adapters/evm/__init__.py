from .adapter import SponsorAdapter
from .authorizer import (
    DelegationAuthorizer,
    normalize_y_parity,
    recover_authority,
    validate_authorization,
)
from .builder import DelegationTransactionBuilder, inspect_delegation
from .calldata import encode_transfer_call, encode_transfer_multiple_call
from .constants import GatewaySettings, load_gateway_settings, get_chain_config
from .encoding import authorization_digest, parse_delegation_marker, encode_delegation_marker
from .ledger import Web3LedgerView
from .schemas import (
    AuthorizationTuple,
    DelegationTransaction,
    FeeParameters,
    DelegationMode,
    DelegationStatus,
    DelegationBuildResult,
    EVMTransactionConfirmation,
    CollectionRequest,
)

__all__ = [
    "SponsorAdapter",
    "CollectionRequest",
    "DelegationAuthorizer",
    "normalize_y_parity",
    "recover_authority",
    "validate_authorization",
    "DelegationTransactionBuilder",
    "inspect_delegation",
    "encode_transfer_call",
    "encode_transfer_multiple_call",
    "GatewaySettings",
    "load_gateway_settings",
    "get_chain_config",
    "authorization_digest",
    "parse_delegation_marker",
    "encode_delegation_marker",
    "Web3LedgerView",
    "AuthorizationTuple",
    "DelegationTransaction",
    "FeeParameters",
    "DelegationMode",
    "DelegationStatus",
    "DelegationBuildResult",
    "EVMTransactionConfirmation",
]
