"""
Chain clients used by the payment executor.
"""
from .base import ChainClient, ChainError, TransactionReceipt, MAX_UINT256, ZERO_ADDRESS
from .evm import EvmChainClient
from .factory import ChainClientFactory
from .networks import get_chain_id, get_usdc_address

__all__ = [
    'ChainClient',
    'ChainError',
    'TransactionReceipt',
    'EvmChainClient',
    'ChainClientFactory',
    'get_chain_id',
    'get_usdc_address',
    'MAX_UINT256',
    'ZERO_ADDRESS',
]
