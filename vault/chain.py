"""
Chain client that executes the facilitator's calls against the in-process
vault ledger instead of a JSON-RPC node.

Each write is recorded as a ``LedgerTransaction``. A reverted call still gets
a hash and a status 0 receipt, like a mined transaction that reverted.
"""
import secrets
from typing import Any, Callable, Dict

from django.db import transaction
from loguru import logger

from facilitator.chain import ChainClient, ChainError, TransactionReceipt, get_chain_id
from facilitator.clock import unix_now
from facilitator.types import Authorization
from vault.errors import InvalidSettlement, VaultError
from vault.ledger import VaultLedger
from vault.models import LedgerTransaction
from vault.services import build_ledger


class LedgerChainClient(ChainClient):
    def __init__(
        self,
        config: Dict[str, Any],
        ledger: VaultLedger = None,
        clock: Callable[[], int] = unix_now,
    ):
        super().__init__(config)
        self.network = config.get('network', 'avalanche-fuji')
        self._chain_id = config.get('chain_id') or get_chain_id(self.network)
        self.ledger = ledger or build_ledger(config, clock)
        self.token = self.ledger.token
        self.signer_address = config.get('signer_address', '')

    @property
    def chain_name(self) -> str:
        return self.network

    @property
    def chain_id(self) -> int:
        return int(self._chain_id)

    @property
    def asset_address(self) -> str:
        return self.token.address

    @property
    def operator_address(self) -> str:
        if not self.signer_address:
            raise ChainError('X402_SIGNER_ADDRESS is not configured.')
        return self.signer_address.lower()

    def balance_of(self, address: str) -> int:
        return self.token.balance_of(address)

    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        return self.token.authorization_state(authorizer, nonce)

    def allowance(self, owner: str, spender: str) -> int:
        return self.token.allowance(owner, spender)

    def transfer_with_authorization(self, authorization: Authorization, signature: str) -> str:
        return self._submit(
            'transferWithAuthorization',
            lambda: self.token.transfer_with_authorization(authorization, signature))

    def approve(self, spender: str, amount: int) -> str:
        return self._submit(
            'approve',
            lambda: self.token.approve(self.operator_address, spender, amount))

    def settle_payment(self, vault: str, recipient: str, amount: int) -> str:
        def call():
            if vault.lower() != self.ledger.address:
                raise InvalidSettlement(f'No vault deployed at {vault}')
            self.ledger.settle_payment(self.operator_address, recipient, amount)
        return self._submit('settlePayment', call)

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        record = LedgerTransaction.objects.filter(tx_hash=tx_hash.lower()).first()
        if record is None:
            raise ChainError(f'Unknown transaction {tx_hash}.')
        return TransactionReceipt(
            tx_hash=record.tx_hash,
            status=record.status,
            block_number=record.id,
            gas_used=0,
        )

    def _submit(self, method: str, call: Callable[[], None]) -> str:
        tx_hash = '0x' + secrets.token_hex(32)
        status, reason = 1, ''
        try:
            with transaction.atomic():
                call()
        except VaultError as exc:
            status, reason = 0, str(exc)
            logger.warning('ledger {} reverted: {}', method, reason)
        LedgerTransaction.objects.create(
            tx_hash=tx_hash,
            method=method,
            sender=self.operator_address,
            status=status,
            revert_reason=reason,
        )
        logger.debug('ledger {} executed in {}', method, tx_hash)
        return tx_hash

    def get_explorer_url(self, tx_hash: str) -> str:
        return f'/admin/vault/ledgertransaction/?tx_hash={tx_hash}'
