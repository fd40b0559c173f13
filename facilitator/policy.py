"""
Spending policy checks run before a payment may reach the executor.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from facilitator.stores import MerchantRegistry, PolicyStore
from facilitator.types import PaymentRequest, PolicyCheckResult


class PolicyValidator:
    """
    Checks a payment request against the payer's policy. Read-only: spend is
    recorded separately, and only after settlement succeeds.
    """

    def __init__(self, store: PolicyStore, merchants: Optional[MerchantRegistry] = None):
        self.store = store
        self.merchants = merchants

    def validate(self, request: PaymentRequest, now: int) -> PolicyCheckResult:
        challenge = request.challenge
        authorization = request.authorization
        amount = challenge.amount_int

        logger.info('policy check: user={} amount={}', request.user_address, amount)

        if self.merchants is not None:
            info = self.merchants.get(challenge.merchant_address)
            if info is not None:
                logger.debug('merchant whitelisted: {}', info.name)

        policy = self.store.get_or_create(request.user_address, now)

        if not policy.is_merchant_authorized(challenge.merchant_address, challenge.merchant_domain):
            return PolicyCheckResult(allowed=False, reason='Merchant not authorized by user')

        if amount > policy.max_transaction_amount:
            return PolicyCheckResult(
                allowed=False,
                reason=f'Exceeds limit (max: {policy.max_transaction_amount})',
                max_allowed=policy.max_transaction_amount,
            )

        remaining = policy.remaining_daily_allowance(now)
        if amount > remaining:
            return PolicyCheckResult(
                allowed=False,
                reason=f'Exceeds daily limit (remaining: {remaining})',
                remaining_daily=remaining,
            )

        if authorization.from_.lower() != request.user_address.lower():
            return PolicyCheckResult(allowed=False, reason='From address mismatch')

        if authorization.to.lower() != challenge.merchant_address.lower():
            return PolicyCheckResult(allowed=False, reason='Destination mismatch')

        if authorization.value_int != amount:
            return PolicyCheckResult(allowed=False, reason='Amount mismatch')

        logger.debug('policy check passed for {}', request.user_address)
        return PolicyCheckResult(allowed=True, remaining_daily=remaining - amount)
