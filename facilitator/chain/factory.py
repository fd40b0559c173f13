"""
Chain backends selectable through ``X402_CHAIN_BACKEND``.

``evm`` signs and sends real transactions over JSON-RPC. The vault app adds
``ledger`` when it is ready, so that payments settle against the in-process
vault ledger instead of a node.
"""
from typing import Any, Dict, Type

from .base import ChainClient
from .evm import EvmChainClient


class ChainClientFactory:
    _clients: Dict[str, Type[ChainClient]] = {
        'evm': EvmChainClient,
    }

    @classmethod
    def create(cls, backend: str, config: Dict[str, Any] = None) -> ChainClient:
        """Build the client for ``backend``; ValueError names the known ones."""
        client_class = cls._clients.get(backend.lower().strip())
        if client_class is None:
            raise ValueError(
                f'Unsupported X402_CHAIN_BACKEND {backend!r}; '
                f'expected one of: {", ".join(sorted(cls._clients))}')
        return client_class(config or {})

    @classmethod
    def register(cls, backend: str, client_class: Type[ChainClient]) -> None:
        cls._clients[backend.lower().strip()] = client_class
