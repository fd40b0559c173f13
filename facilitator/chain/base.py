"""
Base chain client interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from facilitator.types import MAX_UINT256, Authorization

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'


class ChainError(Exception):
    """Raised when a chain read or write cannot be completed."""


@dataclass(frozen=True)
class TransactionReceipt:
    """Inclusion result of a submitted transaction."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """
    Read/write access to the settlement token and the downstream vault.

    The facilitator never talks to a chain except through this interface,
    so the executor can run against a JSON-RPC node or the in-process
    vault ledger alike.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the chain client.

        Args:
            config: Chain-specific configuration (RPC URL, signer keys, etc.)
        """
        self.config = config

    @property
    @abstractmethod
    def chain_name(self) -> str:
        """Return the network name (e.g., 'avalanche-fuji')."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Return the EIP-155 chain id used in the typed-data domain."""

    @property
    @abstractmethod
    def asset_address(self) -> str:
        """Return the settlement token address (EIP-712 verifyingContract)."""

    @property
    @abstractmethod
    def operator_address(self) -> str:
        """Return the facilitator's operating account."""

    @abstractmethod
    def balance_of(self, address: str) -> int:
        """Token balance of ``address`` in base units."""

    @abstractmethod
    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        """True if ``nonce`` was already consumed for ``authorizer``."""

    @abstractmethod
    def allowance(self, owner: str, spender: str) -> int:
        """Token allowance granted by ``owner`` to ``spender``."""

    @abstractmethod
    def transfer_with_authorization(
        self,
        authorization: Authorization,
        signature: str,
    ) -> str:
        """
        Submit an EIP-3009 transferWithAuthorization.

        Returns:
            Transaction hash of the submitted transaction
        """

    @abstractmethod
    def approve(self, spender: str, amount: int) -> str:
        """Approve ``spender`` from the operator account; returns tx hash."""

    @abstractmethod
    def settle_payment(self, vault: str, recipient: str, amount: int) -> str:
        """Call the vault's settlePayment(recipient, amount); returns tx hash."""

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Block until ``tx_hash`` is included and return its receipt."""

    def get_explorer_url(self, tx_hash: str) -> str:
        """
        Get block explorer URL for transaction.

        Args:
            tx_hash: Transaction hash

        Returns:
            Explorer URL
        """
        return f"{self.config.get('explorer_url', '')}/tx/{tx_hash}"
