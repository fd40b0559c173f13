"""
Revenue vault: custody of settled payments, protocol fee, tiered vesting
and claims.

Settlement and claim run under a non-reentrant guard and inside one atomic
block with the vault row locked; any revert (including a failed token
transfer) rolls the whole call back.
"""
from __future__ import annotations

import functools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict

from django.db import transaction
from loguru import logger
from web3 import Web3

from facilitator.chain import ZERO_ADDRESS
from facilitator.clock import unix_now
from vault.errors import (
    AccessControlError,
    InvalidConfiguration,
    InvalidSettlement,
    NothingToClaim,
    ReentrancyError,
)
from vault.models import AuthorProfile, VaultEvent, VaultRole, VaultState
from vault.tiers import BPS_DENOMINATOR, TIER_RULES, Tier, compute_fee, split_income
from vault.token import SettlementToken


Role = VaultRole.Role

ROLE_NAMES = {
    Role.ADMIN: 'DEFAULT_ADMIN_ROLE',
    Role.FACILITATOR: 'FACILITATOR_ROLE',
}


@dataclass(frozen=True)
class Settlement:
    recipient: str
    amount: int
    fee: int
    net_income: int
    released: int
    locked: int
    unlock_time: int


@dataclass(frozen=True)
class ProfileView:
    recipient: str
    tier: Tier
    available_balance: int
    locked_balance: int
    unlock_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recipient': self.recipient,
            'tier': self.tier.name,
            'availableBalance': str(self.available_balance),
            'lockedBalance': str(self.locked_balance),
            'unlockTime': self.unlock_time,
        }


def _is_zero(address: str) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def _normalize(address: str, label: str, error=InvalidConfiguration) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise error(f'Invalid {label} address: {address}')
    return address.lower()


def nonreentrant(method):
    """Reject calls re-entering the ledger from inside a guarded call."""

    @functools.wraps(method)
    def guarded(self, *args, **kwargs):
        if getattr(self._entered, 'active', False):
            raise ReentrancyError()
        with self._mutex:
            self._entered.active = True
            try:
                return method(self, *args, **kwargs)
            finally:
                self._entered.active = False

    return guarded


class VaultLedger:
    def __init__(
        self,
        token: SettlementToken,
        address: str,
        clock: Callable[[], int] = unix_now,
    ):
        self.token = token
        self.address = address.lower()
        self.clock = clock
        self._mutex = threading.Lock()
        self._entered = threading.local()

    @classmethod
    def deploy(
        cls,
        token: SettlementToken,
        address: str,
        admin: str,
        treasury: str,
        protocol_fee_bps: int = 100,
        clock: Callable[[], int] = unix_now,
    ) -> 'VaultLedger':
        """Create the vault and grant ``admin`` unless it already exists."""
        address = _normalize(address, 'vault')
        admin = _normalize(admin, 'admin')
        treasury = _normalize(treasury, 'treasury')
        if _is_zero(treasury):
            raise InvalidConfiguration('Treasury cannot be the zero address')
        if not 0 <= protocol_fee_bps <= BPS_DENOMINATOR:
            raise InvalidConfiguration(f'Protocol fee out of range: {protocol_fee_bps}')

        with transaction.atomic():
            state, created = VaultState.objects.get_or_create(
                address=address,
                defaults={
                    'asset': token.address,
                    'treasury': treasury,
                    'protocol_fee_bps': protocol_fee_bps,
                },
            )
            if created:
                VaultRole.objects.create(vault=state, account=admin, role=Role.ADMIN)
                logger.info('vault deployed at {}: treasury={} fee_bps={}',
                            address, treasury, protocol_fee_bps)
        return cls(token, address, clock)

    def _state(self, for_update: bool = False) -> VaultState:
        queryset = VaultState.objects.select_for_update() if for_update else VaultState.objects
        try:
            return queryset.get(address=self.address)
        except VaultState.DoesNotExist as exc:
            raise InvalidConfiguration(f'No vault deployed at {self.address}') from exc

    def _emit(self, state: VaultState, name: str, **args: Any) -> None:
        VaultEvent.objects.create(vault=state, name=name, args=args)

    # Access control

    def has_role(self, account: str, role: str) -> bool:
        return VaultRole.objects.filter(
            vault__address=self.address, account=account.lower(), role=role).exists()

    def _require_role(self, account: str, role: str) -> None:
        if not self.has_role(account, role):
            raise AccessControlError(account, ROLE_NAMES[Role(role)])

    def grant_role(self, caller: str, role: str, account: str) -> None:
        self._require_role(caller, Role.ADMIN)
        account = _normalize(account, 'account')
        VaultRole.objects.get_or_create(vault=self._state(), account=account, role=Role(role))
        logger.info('vault {}: granted {} to {}', self.address, role, account)

    def revoke_role(self, caller: str, role: str, account: str) -> None:
        self._require_role(caller, Role.ADMIN)
        VaultRole.objects.filter(
            vault__address=self.address, account=account.lower(), role=role).delete()
        logger.info('vault {}: revoked {} from {}', self.address, role, account)

    # Settlement

    @nonreentrant
    def settle_payment(self, caller: str, recipient: str, amount: int) -> Settlement:
        """
        Pull ``amount`` from the calling facilitator, forward the protocol fee
        to the treasury and credit the rest to ``recipient`` split by tier.
        """
        self._require_role(caller, Role.FACILITATOR)
        if amount <= 0:
            raise InvalidSettlement('Amount must be > 0')
        recipient = _normalize(recipient, 'author', InvalidSettlement)
        if _is_zero(recipient):
            raise InvalidSettlement('Invalid author')

        with transaction.atomic():
            state = self._state(for_update=True)
            self.token.transfer_from(self.address, caller, self.address, amount)

            fee, net_income = compute_fee(amount, state.protocol_fee_bps)
            if fee > 0:
                self.token.transfer(self.address, state.treasury, fee)

            profile, _ = AuthorProfile.objects.select_for_update().get_or_create(
                vault=state, recipient=recipient)
            rule = TIER_RULES[Tier(profile.tier)]
            released, locked = split_income(net_income, rule)

            profile.available_balance = str(int(profile.available_balance) + released)
            profile.locked_balance = str(int(profile.locked_balance) + locked)
            if locked > 0:
                # Successive tranches share one unlock time; it never moves back.
                profile.unlock_time = max(
                    profile.unlock_time, self.clock() + rule.lock_duration_seconds)
            profile.save()

            self._emit(state, VaultEvent.Name.PAYMENT_SETTLED,
                       author=recipient, amount=str(amount), fee=str(fee), lock=str(locked))

        logger.info('vault {}: settled {} for {} (fee={} released={} locked={})',
                    self.address, amount, recipient, fee, released, locked)
        return Settlement(
            recipient=recipient,
            amount=amount,
            fee=fee,
            net_income=net_income,
            released=released,
            locked=locked,
            unlock_time=profile.unlock_time,
        )

    @nonreentrant
    def claim_revenue(self, caller: str) -> int:
        """Pay out everything ``caller`` may withdraw now; returns the payout."""
        recipient = caller.lower()
        with transaction.atomic():
            state = self._state(for_update=True)
            profile = (AuthorProfile.objects.select_for_update()
                       .filter(vault=state, recipient=recipient).first())
            if profile is None:
                raise NothingToClaim()

            available = int(profile.available_balance)
            locked = int(profile.locked_balance)
            if locked > 0 and self.clock() >= profile.unlock_time:
                available += locked
                locked = 0

            if available == 0:
                raise NothingToClaim()

            profile.available_balance = '0'
            profile.locked_balance = str(locked)
            profile.save()

            self.token.transfer(self.address, recipient, available)
            self._emit(state, VaultEvent.Name.REVENUE_CLAIMED,
                       author=recipient, amount=str(available))

        logger.info('vault {}: {} claimed {}', self.address, recipient, available)
        return available

    # Administration

    def set_author_tier(self, caller: str, recipient: str, tier: int) -> None:
        self._require_role(caller, Role.ADMIN)
        try:
            tier = Tier(tier)
        except ValueError as exc:
            raise InvalidConfiguration(f'Unknown tier: {tier}') from exc
        recipient = _normalize(recipient, 'author')
        with transaction.atomic():
            state = self._state(for_update=True)
            profile, _ = AuthorProfile.objects.select_for_update().get_or_create(
                vault=state, recipient=recipient)
            profile.tier = tier.value
            profile.save(update_fields=['tier', 'updated_at'])
            self._emit(state, VaultEvent.Name.TIER_UPDATED, author=recipient, tier=tier.name)
        logger.info('vault {}: tier of {} set to {}', self.address, recipient, tier.name)

    def set_treasury(self, caller: str, treasury: str) -> None:
        self._require_role(caller, Role.ADMIN)
        treasury = _normalize(treasury, 'treasury')
        if _is_zero(treasury):
            raise InvalidConfiguration('Treasury cannot be the zero address')
        with transaction.atomic():
            state = self._state(for_update=True)
            state.treasury = treasury
            state.save(update_fields=['treasury', 'updated_at'])
            self._emit(state, VaultEvent.Name.TREASURY_UPDATED, treasury=treasury)
        logger.info('vault {}: treasury set to {}', self.address, treasury)

    def set_protocol_fee_bps(self, caller: str, fee_bps: int) -> None:
        self._require_role(caller, Role.ADMIN)
        if not 0 <= fee_bps <= BPS_DENOMINATOR:
            raise InvalidConfiguration(f'Protocol fee out of range: {fee_bps}')
        with transaction.atomic():
            state = self._state(for_update=True)
            state.protocol_fee_bps = fee_bps
            state.save(update_fields=['protocol_fee_bps', 'updated_at'])
            self._emit(state, VaultEvent.Name.PROTOCOL_FEE_UPDATED, feeBps=fee_bps)
        logger.info('vault {}: protocol fee set to {} bps', self.address, fee_bps)

    # Views

    def get_profile(self, recipient: str) -> ProfileView:
        profile = AuthorProfile.objects.filter(
            vault__address=self.address, recipient=recipient.lower()).first()
        if profile is None:
            return ProfileView(recipient.lower(), Tier.TIER0, 0, 0, 0)
        return ProfileView(
            recipient=profile.recipient,
            tier=Tier(profile.tier),
            available_balance=int(profile.available_balance),
            locked_balance=int(profile.locked_balance),
            unlock_time=profile.unlock_time,
        )

    def describe(self) -> Dict[str, Any]:
        state = self._state()
        return {
            'address': state.address,
            'asset': state.asset,
            'treasury': state.treasury,
            'protocolFeeBps': state.protocol_fee_bps,
        }
