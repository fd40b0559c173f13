"""
Settlement token of the in-process ledger.

``LedgerToken`` keeps ERC-20 balances and allowances plus the EIP-3009
``transferWithAuthorization`` entry point in the database. Every mutating
call runs in its own atomic block and locks the rows it touches, so a
revert never leaves a half-applied transfer.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from django.db import IntegrityError, transaction
from loguru import logger

from facilitator.chain import MAX_UINT256
from facilitator.clock import unix_now
from facilitator.signature import SignatureVerifier
from facilitator.types import Authorization
from vault.errors import AuthorizationError, InsufficientFunds, VaultError
from vault.models import TokenAllowance, TokenAuthorization, TokenBalance


class SettlementToken(ABC):
    """The subset of ERC-20 / EIP-3009 the vault and the facilitator need."""

    address: str

    @abstractmethod
    def balance_of(self, holder: str) -> int:
        pass

    @abstractmethod
    def allowance(self, owner: str, spender: str) -> int:
        pass

    @abstractmethod
    def approve(self, owner: str, spender: str, amount: int) -> None:
        pass

    @abstractmethod
    def transfer(self, sender: str, to: str, amount: int) -> None:
        pass

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        pass

    @abstractmethod
    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        pass

    @abstractmethod
    def transfer_with_authorization(self, authorization: Authorization, signature: str) -> None:
        pass


class LedgerToken(SettlementToken):
    def __init__(
        self,
        address: str,
        verifier: SignatureVerifier,
        clock: Callable[[], int] = unix_now,
    ):
        self.address = address.lower()
        self.verifier = verifier
        self.clock = clock

    def _balance_row(self, holder: str) -> TokenBalance:
        row, _ = TokenBalance.objects.select_for_update().get_or_create(
            asset=self.address, holder=holder.lower())
        return row

    def _allowance_row(self, owner: str, spender: str) -> TokenAllowance:
        row, _ = TokenAllowance.objects.select_for_update().get_or_create(
            asset=self.address, owner=owner.lower(), spender=spender.lower())
        return row

    def balance_of(self, holder: str) -> int:
        row = TokenBalance.objects.filter(asset=self.address, holder=holder.lower()).first()
        return int(row.balance) if row else 0

    def allowance(self, owner: str, spender: str) -> int:
        row = TokenAllowance.objects.filter(
            asset=self.address, owner=owner.lower(), spender=spender.lower()).first()
        return int(row.amount) if row else 0

    def mint(self, to: str, amount: int) -> None:
        with transaction.atomic():
            row = self._balance_row(to)
            row.balance = str(int(row.balance) + int(amount))
            row.save(update_fields=['balance'])
        logger.debug('minted {} to {}', amount, to)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if not 0 <= amount <= MAX_UINT256:
            raise VaultError('ERC20: invalid approval amount')
        with transaction.atomic():
            row = self._allowance_row(owner, spender)
            row.amount = str(amount)
            row.save(update_fields=['amount'])

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise VaultError('ERC20: negative transfer amount')
        source = self._balance_row(sender)
        balance = int(source.balance)
        if balance < amount:
            raise InsufficientFunds('ERC20: transfer amount exceeds balance')
        source.balance = str(balance - amount)
        source.save(update_fields=['balance'])

        target = self._balance_row(to)
        target.balance = str(int(target.balance) + amount)
        target.save(update_fields=['balance'])

    def transfer(self, sender: str, to: str, amount: int) -> None:
        with transaction.atomic():
            self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        with transaction.atomic():
            row = self._allowance_row(owner, spender)
            allowed = int(row.amount)
            if allowed < amount:
                raise InsufficientFunds('ERC20: insufficient allowance')
            # An unlimited approval is never decremented.
            if allowed != MAX_UINT256:
                row.amount = str(allowed - amount)
                row.save(update_fields=['amount'])
            self._move(owner, to, amount)

    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        return TokenAuthorization.objects.filter(
            asset=self.address, authorizer=authorizer.lower(), nonce=nonce.lower()).exists()

    def transfer_with_authorization(self, authorization: Authorization, signature: str) -> None:
        now = self.clock()
        if now <= authorization.valid_after_int:
            raise AuthorizationError('FiatTokenV2: authorization is not yet valid')
        if now >= authorization.valid_before_int:
            raise AuthorizationError('FiatTokenV2: authorization is expired')

        with transaction.atomic():
            if self.authorization_state(authorization.from_, authorization.nonce):
                raise AuthorizationError('FiatTokenV2: authorization is used or canceled')
            if not self.verifier.verify(authorization, signature).is_valid:
                raise AuthorizationError('FiatTokenV2: invalid signature')
            try:
                with transaction.atomic():
                    TokenAuthorization.objects.create(
                        asset=self.address,
                        authorizer=authorization.from_.lower(),
                        nonce=authorization.nonce.lower(),
                    )
            except IntegrityError as exc:
                raise AuthorizationError('FiatTokenV2: authorization is used or canceled') from exc
            self._move(authorization.from_, authorization.to, authorization.value_int)
        logger.debug('authorization {} used by {}', authorization.nonce, authorization.from_)
