"""
EVM Chain Configuration Management

Protocol constants for EIP-7702 set-code transactions, a registry of the
chains the gateway is exercised on, RPC URL resolution, and explicit loading
of gateway settings from the environment.

Nothing in this module holds process-wide configuration state: settings are
returned as value objects and passed explicitly to the components that need
them.
"""

import os
from typing import Any, Dict, List, Mapping, Optional

import dotenv
import httpx
from eth_account import Account
from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ...engine.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# EIP-7702 protocol constants
# ---------------------------------------------------------------------------

#: EIP-2718 transaction type of a set-code transaction.
SET_CODE_TX_TYPE: int = 0x04

#: Domain separator prepended to the RLP-encoded authorization tuple.
AUTHORIZATION_MAGIC: bytes = b"\x05"

#: Code prefix that marks an account as delegated (followed by 20 address bytes).
DELEGATION_MARKER_PREFIX: bytes = b"\xef\x01\x00"

#: Exact length of a delegation marker: 3 prefix bytes + 20 address bytes.
DELEGATION_MARKER_LENGTH: int = 23

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"

MAX_UINT64: int = 2**64 - 1
MAX_UINT256: int = 2**256 - 1

#: Order of the secp256k1 group; signature scalars lie in [1, n).
SECP256K1_N: int = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

#: Chain id that makes an authorization valid on every chain.
ANY_CHAIN_ID: int = 0

#: Gas limit used by the original collection scripts for a single sweep.
DEFAULT_GAS_LIMIT: int = 200_000

#: Fee caps used when neither the caller nor the environment sets them (wei).
DEFAULT_MAX_FEE_PER_GAS: int = 2_000_000_000
DEFAULT_MAX_PRIORITY_FEE_PER_GAS: int = 1_000_000_000

#: Default receipt polling (roughly two minutes on Arbitrum Sepolia).
DEFAULT_RECEIPT_ATTEMPTS: int = 60
DEFAULT_RECEIPT_POLL_INTERVAL: float = 2.0


class EvmChainInfo(BaseModel):
    """Subset of ethereum-lists chain metadata we rely on.

    Compatible with the JSON files in ``ethereum-lists/chains``
    (``eip155-<chain_id>.json``).
    """
    name: str = Field(..., description="Human-readable network name")
    rpc: List[str] = Field(..., description="List of RPC endpoints")
    infoURL: str = Field(..., description="URL with more information about the chain")
    chainId: int = Field(..., description="Chain ID of the network")
    explorers: Optional[List[Dict[str, str]]] = Field(
        default=None,
        description="Optional list of explorer descriptors from the upstream payload",
    )


class EvmChainConfig(BaseModel):
    """EVM blockchain network configuration."""
    caip2: str
    chain_id: int
    name: str
    public_rpc_url: str = Field(..., description="Public RPC endpoint")
    explorer_url: str = Field(..., description="Block explorer URL")
    supports_set_code: bool = Field(default=True, description="Whether type-0x04 transactions are accepted")

    def tx_url(self, tx_hash: str) -> str:
        """Return the explorer link for a transaction hash."""
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


# Raw chain configuration data, keyed by CAIP-2 identifier.
_EVM_CHAINS_DATA: Dict[str, Dict[str, Any]] = {
    "eip155:421614": {
        "name": "Arbitrum Sepolia",
        "public_rpc_url": "https://sepolia-rollup.arbitrum.io/rpc",
        "explorer_url": "https://sepolia.arbiscan.io",
    },
    "eip155:11155111": {
        "name": "Ethereum Sepolia",
        "public_rpc_url": "https://ethereum-sepolia-rpc.publicnode.com",
        "explorer_url": "https://sepolia.etherscan.io",
    },
    "eip155:1": {
        "name": "Ethereum Mainnet",
        "public_rpc_url": "https://ethereum-rpc.publicnode.com",
        "explorer_url": "https://etherscan.io",
    },
    "eip155:42161": {
        "name": "Arbitrum One",
        "public_rpc_url": "https://arb1.arbitrum.io/rpc",
        "explorer_url": "https://arbiscan.io",
    },
}


def get_chain_config(chain_id: int) -> Optional[EvmChainConfig]:
    """
    Look up a chain in the built-in registry.

    Args:
        chain_id: EIP-155 chain id.

    Returns:
        EvmChainConfig, or None when the chain is not registered.
    """
    caip2 = f"eip155:{chain_id}"
    data = _EVM_CHAINS_DATA.get(caip2)
    if data is None:
        return None
    return EvmChainConfig(caip2=caip2, chain_id=chain_id, **data)


def get_rpc_url(chain_id: int, rpc_url: Optional[str] = None) -> str:
    """
    Resolve the RPC URL for a chain.

    An explicit ``rpc_url`` always wins. Otherwise the registry's public
    endpoint is used, and for unregistered chains the first key-less HTTPS
    endpoint published in ethereum-lists.

    Raises:
        ConfigurationError: If no endpoint can be determined.
    """
    if rpc_url:
        return rpc_url

    config = get_chain_config(chain_id)
    if config is not None:
        return config.public_rpc_url

    try:
        info = fetch_evm_chain_info(chain_id)
    except (httpx.HTTPError, TypeError, RuntimeError) as e:
        raise ConfigurationError(
            f"Unsupported chain_id {chain_id} and chain metadata lookup failed: {e}",
            context={"chain_id": chain_id},
        ) from e

    public_rpc = parse_public_rpc_url(info.rpc)
    if public_rpc is None:
        raise ConfigurationError(
            f"No public RPC endpoint published for chain_id {chain_id}; pass rpc_url explicitly",
            context={"chain_id": chain_id},
        )
    return public_rpc


def fetch_evm_chain_info(chain_id: int) -> EvmChainInfo:
    """
    Retrieves EVM chain metadata from the ethereum-lists repository.

    Raises:
        httpx.HTTPError: If the chain file is not found or unreachable.
        TypeError: If the payload does not match the EvmChainInfo schema.
    """
    url = (
        "https://raw.githubusercontent.com/ethereum-lists/chains/master/_data/chains/"
        f"eip155-{chain_id}.json"
    )
    payload = fetch_json(url)

    try:
        return EvmChainInfo(**payload)
    except Exception as e:
        raise TypeError(
            f"Schema mismatch: Data from {url} is incompatible with EvmChainInfo."
        ) from e


def fetch_json(url: str, timeout: float = 10.0) -> Dict[str, Any]:
    """
    Fetches JSON data from a URL.

    Raises:
        httpx.HTTPStatusError: If the server returns a 4xx or 5xx status code.
        httpx.RequestError: If a network-level error occurs.
        RuntimeError: If the response is not valid JSON.
    """
    with httpx.Client(timeout=timeout) as client:
        response = client.get(url)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as json_exc:
            raise RuntimeError(
                f"Failed to decode JSON from {url}. Content-Type: {response.headers.get('Content-Type')}"
            ) from json_exc


def parse_public_rpc_url(rpcs: List[str], start_with: str = "https://") -> Optional[str]:
    """Pick a public (no-key) RPC URL from a chain's RPC list.

    Endpoints containing ``$`` or ``{...}`` placeholders need an API key and
    are skipped.
    """
    for rpc in rpcs:
        if not isinstance(rpc, str) or not rpc.startswith(start_with):
            continue
        if "$" in rpc or "{" in rpc or "}" in rpc:
            continue
        return rpc
    return None


# ---------------------------------------------------------------------------
# Gateway settings
# ---------------------------------------------------------------------------

#: Environment variable names, as used by the collection scripts.
_REQUIRED_ENV = {
    "sponsor_private_key": "PRIVATE_KEY",
    "payment_private_key": "USER_PAYMENT_PRIVATE_KEY",
    "implementation_address": "TOKEN_TRANSFERER",
    "hot_wallet": "HOT_WALLET",
    "token_address": "TEST_TOKEN",
}
_OPTIONAL_ENV = {
    "payment_address": "USER_PAYMENT_ADDR",
    "rpc_url": "RPC_URL",
    "chain_id": "CHAIN_ID",
    "gas_limit": "GAS_LIMIT",
    "max_fee_per_gas": "MAX_FEE_PER_GAS",
    "max_priority_fee_per_gas": "MAX_PRIORITY_FEE_PER_GAS",
}


class GatewaySettings(BaseModel):
    """
    Explicit configuration for a sponsored collection run.

    Attributes:
        sponsor_private_key: Key of the account that broadcasts and pays gas.
        payment_private_key: Key of the user payment address (delegating account).
        payment_address: Optional expected address of the payment key.
        implementation_address: TokenTransferer contract delegated to.
        hot_wallet: Recipient of collected tokens.
        token_address: ERC-20 token to collect.
        rpc_url: RPC endpoint; resolved from ``chain_id`` when omitted.
        chain_id: Chain to operate on; read from the node when omitted.
        gas_limit / max_fee_per_gas / max_priority_fee_per_gas: Fee fields of
            the type-0x04 transaction, in wei.
    """

    sponsor_private_key: str = Field(..., repr=False)
    payment_private_key: str = Field(..., repr=False)
    payment_address: Optional[str] = None
    implementation_address: str
    hot_wallet: str
    token_address: str
    rpc_url: Optional[str] = None
    chain_id: Optional[int] = Field(default=None, ge=0)
    gas_limit: int = Field(default=DEFAULT_GAS_LIMIT, gt=0)
    max_fee_per_gas: int = Field(default=DEFAULT_MAX_FEE_PER_GAS, ge=0)
    max_priority_fee_per_gas: int = Field(default=DEFAULT_MAX_PRIORITY_FEE_PER_GAS, ge=0)

    @field_validator("payment_address", "implementation_address", "hot_wallet", "token_address")
    @classmethod
    def _checksum(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not is_address(value):
            raise ValueError(f"not a valid EVM address: {value!r}")
        return to_checksum_address(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> "GatewaySettings":
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas must not exceed max_fee_per_gas")
        if self.implementation_address == ZERO_ADDRESS:
            raise ValueError("implementation_address must not be the zero address")
        if self.payment_address is not None:
            try:
                derived = Account.from_key(self.payment_private_key).address
            except Exception as e:
                raise ValueError("payment private key is malformed") from e
            if derived != self.payment_address:
                raise ValueError(
                    f"payment_address {self.payment_address} does not match the payment private key"
                )
        return self

    def resolve_rpc_url(self) -> str:
        """Return ``rpc_url`` or the registry endpoint for ``chain_id``."""
        if self.rpc_url:
            return self.rpc_url
        if self.chain_id is None:
            raise ConfigurationError("Either RPC_URL or CHAIN_ID must be configured")
        return get_rpc_url(self.chain_id)


def load_gateway_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: Optional[str] = None,
) -> GatewaySettings:
    """
    Build :class:`GatewaySettings` from environment variables.

    When ``environ`` is omitted the process environment is used, after
    loading a ``.env`` file with python-dotenv (existing variables win).

    Raises:
        ConfigurationError: If required variables are missing or invalid.
    """
    if environ is None:
        dotenv.load_dotenv(dotenv_path=dotenv_path)
        environ = os.environ

    missing = [name for name in _REQUIRED_ENV.values() if not environ.get(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            context={"missing": missing},
        )

    values: Dict[str, Any] = {field: environ[name] for field, name in _REQUIRED_ENV.items()}
    for field, name in _OPTIONAL_ENV.items():
        raw = environ.get(name)
        if raw:
            values[field] = raw

    try:
        return GatewaySettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid gateway configuration: {e}") from e
