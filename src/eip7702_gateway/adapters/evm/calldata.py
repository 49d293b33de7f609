"""
TokenTransferer + ERC20 ABI Module

ABI fragments and calldata encoders for the calls a delegated payment
address executes: the TokenTransferer implementation's ``transfer`` /
``transferMultiple`` sweeps, and the ERC-20 ``balanceOf`` view.

Usage:
    from .calldata import (
        encode_transfer_call,
        encode_transfer_multiple_call,
        get_balance_abi,
    )

    # Sweep one token to the hot wallet
    call_data = encode_transfer_call(token_address, hot_wallet)

    # Sweep several tokens in one transaction
    call_data = encode_transfer_multiple_call([usdc, dai], hot_wallet)
"""

from typing import Any, Dict, List, Sequence

from eth_abi import encode
from eth_utils import is_address, keccak, to_checksum_address

from ...engine.exceptions import InvalidInputError

TRANSFER_SIGNATURE = "transfer(address,address)"
TRANSFER_MULTIPLE_SIGNATURE = "transferMultiple(address[],address)"


def get_balance_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for querying an ERC-20 token balance.

    Returns:
        List[Dict[str, Any]]: ABI for balanceOf function

    Example:
        abi = get_balance_abi()
        contract = web3.eth.contract(address=token_address, abi=abi)
        balance = await contract.functions.balanceOf(owner).call()
    """
    return [
        {
            "name": "balanceOf",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "account", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_token_transferer_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the TokenTransferer implementation contract.

    The contract's code runs in the context of the delegating account, so
    ``transfer`` moves the account's whole balance of ``token`` to
    ``recipient``.

    Returns:
        List[Dict[str, Any]]: ABI for ``transfer`` and ``transferMultiple``.
    """
    return [
        {
            "name": "transfer",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "token", "type": "address"},
                {"name": "recipient", "type": "address"},
            ],
            "outputs": [],
        },
        {
            "name": "transferMultiple",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "tokens", "type": "address[]"},
                {"name": "recipient", "type": "address"},
            ],
            "outputs": [],
        },
    ]


def _selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def _checked(address: str, field: str) -> str:
    if not isinstance(address, str) or not is_address(address):
        raise InvalidInputError(f"Invalid {field} address", address=str(address), account=field)
    return to_checksum_address(address)


def encode_transfer_call(token: str, recipient: str) -> bytes:
    """
    Encode ``TokenTransferer.transfer(token, recipient)``.

    Raises:
        InvalidInputError: If either address is malformed.
    """
    params = encode(["address", "address"], [_checked(token, "token"), _checked(recipient, "recipient")])
    return _selector(TRANSFER_SIGNATURE) + params


def encode_transfer_multiple_call(tokens: Sequence[str], recipient: str) -> bytes:
    """
    Encode ``TokenTransferer.transferMultiple(tokens, recipient)``.

    Raises:
        InvalidInputError: If ``tokens`` is empty or any address is malformed.
    """
    if not tokens:
        raise InvalidInputError("transferMultiple needs at least one token")
    token_list = [_checked(token, "token") for token in tokens]
    params = encode(["address[]", "address"], [token_list, _checked(recipient, "recipient")])
    return _selector(TRANSFER_MULTIPLE_SIGNATURE) + params
