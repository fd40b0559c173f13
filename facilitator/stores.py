"""
User policy and merchant stores.

Policies are created lazily with the configured defaults on first lookup.
The daily spend counter is reset lazily too: the first write after a 24h
window has elapsed zeroes it, and reads report the full limit once the
window has elapsed.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from django.db import transaction
from loguru import logger

from facilitator.models import Merchant, UserPolicyRecord


ONE_DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class PolicyDefaults:
    max_transaction_amount: int = 100_000_000
    daily_spending_limit: int = 500_000_000
    auto_pay_enabled: bool = True


@dataclass
class UserPolicy:
    user_address: str
    max_transaction_amount: int
    daily_spending_limit: int
    spent_today: int = 0
    last_reset_timestamp: int = 0
    authorized_merchants: Set[str] = field(default_factory=set)
    authorized_domains: Set[str] = field(default_factory=set)
    auto_pay_enabled: bool = False

    @property
    def key(self) -> str:
        return self.user_address.lower()

    def window_elapsed(self, now: int) -> bool:
        return now - self.last_reset_timestamp > ONE_DAY_SECONDS

    def roll_window(self, now: int) -> bool:
        if not self.window_elapsed(now):
            return False
        self.spent_today = 0
        self.last_reset_timestamp = now
        return True

    def remaining_daily_allowance(self, now: int) -> int:
        if self.window_elapsed(now):
            return self.daily_spending_limit
        return max(self.daily_spending_limit - self.spent_today, 0)

    def is_merchant_authorized(self, merchant_address: str, merchant_domain: Optional[str] = None) -> bool:
        if merchant_address.lower() in self.authorized_merchants:
            return True
        if merchant_domain and merchant_domain.lower() in self.authorized_domains:
            return True
        # Trust fallback: with auto-pay on, any merchant is accepted.
        return self.auto_pay_enabled

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        data = {
            'userAddress': self.user_address,
            'maxTransactionAmount': str(self.max_transaction_amount),
            'dailySpendingLimit': str(self.daily_spending_limit),
            'spentToday': str(self.spent_today),
            'lastResetTimestamp': self.last_reset_timestamp,
            'authorizedMerchants': sorted(self.authorized_merchants),
            'authorizedDomains': sorted(self.authorized_domains),
            'autoPayEnabled': self.auto_pay_enabled,
        }
        if now is not None:
            data['remainingDailyAllowance'] = str(self.remaining_daily_allowance(now))
        return data


class PolicyStore(ABC):
    """
    Key-value store of user policies, keyed by lowercase address.

    Subclasses provide ``get``/``put``/``scan`` and may override ``_mutate``
    to make read-modify-write sequences atomic.
    """

    def __init__(self, defaults: PolicyDefaults = None):
        self.defaults = defaults or PolicyDefaults()

    @abstractmethod
    def get(self, address: str) -> Optional[UserPolicy]:
        pass

    @abstractmethod
    def put(self, policy: UserPolicy) -> None:
        pass

    @abstractmethod
    def scan(self) -> Iterator[UserPolicy]:
        pass

    def new_policy(self, address: str, now: int) -> UserPolicy:
        return UserPolicy(
            user_address=address,
            max_transaction_amount=self.defaults.max_transaction_amount,
            daily_spending_limit=self.defaults.daily_spending_limit,
            spent_today=0,
            last_reset_timestamp=now,
            auto_pay_enabled=self.defaults.auto_pay_enabled,
        )

    def get_or_create(self, address: str, now: int) -> UserPolicy:
        policy = self.get(address)
        if policy is None:
            policy = self.new_policy(address, now)
            self.put(policy)
            logger.debug('created default policy for {}', address)
        return policy

    def _mutate(self, address: str, now: int, change: Callable[[UserPolicy], None]) -> UserPolicy:
        policy = self.get_or_create(address, now)
        change(policy)
        self.put(policy)
        return policy

    def update(self, address: str, now: int, **changes: Any) -> UserPolicy:
        def apply(policy: UserPolicy) -> None:
            for name, value in changes.items():
                if value is None:
                    continue
                if not hasattr(policy, name):
                    raise AttributeError(f'Unknown policy field: {name}')
                setattr(policy, name, value)
        return self._mutate(address, now, apply)

    def authorize_merchant(self, address: str, merchant_address: str, now: int) -> UserPolicy:
        return self._mutate(
            address, now,
            lambda policy: policy.authorized_merchants.add(merchant_address.lower()))

    def authorize_domain(self, address: str, domain: str, now: int) -> UserPolicy:
        return self._mutate(
            address, now,
            lambda policy: policy.authorized_domains.add(domain.lower()))

    def record_spend(self, address: str, amount: int, now: int) -> UserPolicy:
        def apply(policy: UserPolicy) -> None:
            if policy.roll_window(now):
                logger.debug('daily spend window reset for {}', address)
            policy.spent_today += amount
        return self._mutate(address, now, apply)

    def remaining_daily_allowance(self, address: str, now: int) -> int:
        return self.get_or_create(address, now).remaining_daily_allowance(now)


class InMemoryPolicyStore(PolicyStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self, defaults: PolicyDefaults = None):
        super().__init__(defaults)
        self._policies: Dict[str, UserPolicy] = {}
        self._lock = threading.RLock()

    def get(self, address: str) -> Optional[UserPolicy]:
        with self._lock:
            return self._policies.get(address.lower())

    def put(self, policy: UserPolicy) -> None:
        with self._lock:
            self._policies[policy.key] = policy

    def scan(self) -> Iterator[UserPolicy]:
        with self._lock:
            policies = list(self._policies.values())
        return iter(policies)

    def _mutate(self, address, now, change):
        with self._lock:
            return super()._mutate(address, now, change)


def _record_to_policy(record: UserPolicyRecord) -> UserPolicy:
    return UserPolicy(
        user_address=record.user_address,
        max_transaction_amount=int(record.max_transaction_amount),
        daily_spending_limit=int(record.daily_spending_limit),
        spent_today=int(record.spent_today),
        last_reset_timestamp=record.last_reset_timestamp,
        authorized_merchants=set(record.authorized_merchants),
        authorized_domains=set(record.authorized_domains),
        auto_pay_enabled=record.auto_pay_enabled,
    )


class DatabasePolicyStore(PolicyStore):
    """Store backed by ``UserPolicyRecord``; mutations lock the row."""

    def get(self, address: str) -> Optional[UserPolicy]:
        record = UserPolicyRecord.objects.filter(user_address=address.lower()).first()
        return _record_to_policy(record) if record else None

    def put(self, policy: UserPolicy) -> None:
        UserPolicyRecord.objects.update_or_create(
            user_address=policy.key,
            defaults={
                'max_transaction_amount': str(policy.max_transaction_amount),
                'daily_spending_limit': str(policy.daily_spending_limit),
                'spent_today': str(policy.spent_today),
                'last_reset_timestamp': policy.last_reset_timestamp,
                'authorized_merchants': sorted(policy.authorized_merchants),
                'authorized_domains': sorted(policy.authorized_domains),
                'auto_pay_enabled': policy.auto_pay_enabled,
            },
        )

    def scan(self) -> Iterator[UserPolicy]:
        for record in UserPolicyRecord.objects.iterator():
            yield _record_to_policy(record)

    def _mutate(self, address, now, change):
        with transaction.atomic():
            record = (UserPolicyRecord.objects.select_for_update()
                      .filter(user_address=address.lower()).first())
            policy = _record_to_policy(record) if record else self.new_policy(address, now)
            change(policy)
            self.put(policy)
        return policy


@dataclass
class MerchantInfo:
    address: str
    name: str
    domain: str
    verified: bool = False
    category: str = ''
    max_transaction_limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'name': self.name,
            'domain': self.domain,
            'verified': self.verified,
            'category': self.category,
            'maxTransactionLimit': (
                str(self.max_transaction_limit)
                if self.max_transaction_limit is not None else None
            ),
        }


def _merchant_to_info(record: Merchant) -> MerchantInfo:
    return MerchantInfo(
        address=record.address,
        name=record.name,
        domain=record.domain,
        verified=record.verified,
        category=record.category,
        max_transaction_limit=(
            int(record.max_transaction_limit) if record.max_transaction_limit else None
        ),
    )


class MerchantRegistry:
    """Facilitator-wide whitelist of known merchants."""

    def is_whitelisted(self, address: str) -> bool:
        return Merchant.objects.filter(address=address.lower()).exists()

    def get(self, address: str) -> Optional[MerchantInfo]:
        record = Merchant.objects.filter(address=address.lower()).first()
        return _merchant_to_info(record) if record else None

    def get_by_domain(self, domain: str) -> Optional[MerchantInfo]:
        record = Merchant.objects.filter(domain__iexact=domain).first()
        return _merchant_to_info(record) if record else None

    def all(self) -> List[MerchantInfo]:
        return [_merchant_to_info(record) for record in Merchant.objects.all()]

    def add(self, merchant: MerchantInfo) -> MerchantInfo:
        with transaction.atomic():
            Merchant.objects.create(
                address=merchant.address.lower(),
                name=merchant.name,
                domain=merchant.domain,
                verified=merchant.verified,
                category=merchant.category,
                max_transaction_limit=(
                    str(merchant.max_transaction_limit)
                    if merchant.max_transaction_limit is not None else None
                ),
            )
        logger.info('merchant whitelisted: {} ({})', merchant.name, merchant.address)
        return merchant

    def remove(self, address: str) -> bool:
        deleted, _ = Merchant.objects.filter(address=address.lower()).delete()
        return deleted > 0
