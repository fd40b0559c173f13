"""
Network metadata for the EVM chains the facilitator settles on.
"""
from typing import Dict

from x402.chains import get_chain_id as sdk_get_chain_id


CHAIN_IDS: Dict[str, int] = {
    'avalanche-fuji': 43113,
    'avalanche': 43114,
    'avalanche-mainnet': 43114,
    'base': 8453,
    'base-sepolia': 84532,
}

EXPLORER_URLS: Dict[str, str] = {
    'avalanche-fuji': 'https://testnet.snowtrace.io',
    'avalanche': 'https://snowtrace.io',
    'avalanche-mainnet': 'https://snowtrace.io',
    'base': 'https://basescan.org',
    'base-sepolia': 'https://sepolia.basescan.org',
}

USDC_ADDRESSES: Dict[str, str] = {
    'avalanche-fuji': '0x5425890298aed601595a70AB815c96711a31Bc65',
    'avalanche': '0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E',
    'avalanche-mainnet': '0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E',
    'base': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
    'base-sepolia': '0x036CbD53842c5426634e7929541eC2318f3dCF7e',
}


def get_chain_id(network: str) -> int:
    """
    Resolve the EIP-155 chain id for a network name.

    Raises:
        ValueError: If the network is unknown here and to the x402 SDK
    """
    network_lower = network.lower().strip()
    if network_lower in CHAIN_IDS:
        return CHAIN_IDS[network_lower]
    return int(sdk_get_chain_id(network_lower))


def get_usdc_address(network: str) -> str:
    """Known USDC deployment for ``network``; empty when there is none."""
    return USDC_ADDRESSES.get(network.lower().strip(), '')
