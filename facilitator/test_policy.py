from django.test import TestCase
from eth_account import Account

from facilitator.policy import PolicyValidator
from facilitator.stores import (
    ONE_DAY_SECONDS,
    DatabasePolicyStore,
    InMemoryPolicyStore,
    MerchantInfo,
    MerchantRegistry,
    PolicyDefaults,
)
from facilitator.testing import payment_body
from facilitator.types import PaymentRequest


NOW = 1_700_000_000
MERCHANT = '0x9999999999999999999999999999999999999999'
OTHER_MERCHANT = '0x8888888888888888888888888888888888888888'


class PolicyStoreMixin:
    def make_store(self, defaults):
        raise NotImplementedError

    def setUp(self) -> None:
        self.user = Account.create('x402-policy-user').address
        self.store = self.make_store(PolicyDefaults(
            max_transaction_amount=100_000_000,
            daily_spending_limit=500_000_000,
            auto_pay_enabled=False,
        ))

    def test_policy_created_with_defaults(self):
        policy = self.store.get_or_create(self.user, NOW)

        self.assertEqual(policy.max_transaction_amount, 100_000_000)
        self.assertEqual(policy.daily_spending_limit, 500_000_000)
        self.assertEqual(policy.spent_today, 0)
        self.assertEqual(policy.last_reset_timestamp, NOW)
        self.assertFalse(policy.auto_pay_enabled)

    def test_lookup_is_case_insensitive(self):
        self.store.record_spend(self.user.lower(), 1000, NOW)

        self.assertEqual(self.store.get(self.user.upper().replace('0X', '0x')).spent_today, 1000)

    def test_record_spend_accumulates_within_window(self):
        self.store.record_spend(self.user, 100, NOW)
        self.store.record_spend(self.user, 250, NOW + 60)

        self.assertEqual(self.store.get(self.user).spent_today, 350)
        self.assertEqual(
            self.store.remaining_daily_allowance(self.user, NOW + 60), 500_000_000 - 350)

    def test_daily_window_resets_after_a_day(self):
        self.store.record_spend(self.user, 400_000_000, NOW)
        later = NOW + ONE_DAY_SECONDS + 1

        self.assertEqual(self.store.remaining_daily_allowance(self.user, later), 500_000_000)

        policy = self.store.record_spend(self.user, 10, later)
        self.assertEqual(policy.spent_today, 10)
        self.assertEqual(policy.last_reset_timestamp, later)

    def test_window_does_not_reset_at_exactly_one_day(self):
        self.store.record_spend(self.user, 400_000_000, NOW)

        self.assertEqual(
            self.store.remaining_daily_allowance(self.user, NOW + ONE_DAY_SECONDS), 100_000_000)

    def test_remaining_allowance_never_negative(self):
        self.store.update(self.user, NOW, daily_spending_limit=100)
        self.store.record_spend(self.user, 150, NOW)

        self.assertEqual(self.store.remaining_daily_allowance(self.user, NOW), 0)

    def test_partial_update_keeps_other_fields(self):
        self.store.authorize_merchant(self.user, MERCHANT, NOW)
        policy = self.store.update(self.user, NOW, max_transaction_amount=5, auto_pay_enabled=None)

        self.assertEqual(policy.max_transaction_amount, 5)
        self.assertEqual(policy.daily_spending_limit, 500_000_000)
        self.assertFalse(policy.auto_pay_enabled)
        self.assertIn(MERCHANT.lower(), policy.authorized_merchants)

    def test_authorize_merchant_and_domain(self):
        self.store.authorize_merchant(self.user, MERCHANT.upper().replace('0X', '0x'), NOW)
        policy = self.store.authorize_domain(self.user, 'Shop.Example.com', NOW)

        self.assertTrue(policy.is_merchant_authorized(MERCHANT))
        self.assertTrue(policy.is_merchant_authorized(OTHER_MERCHANT, 'shop.example.com'))
        self.assertFalse(policy.is_merchant_authorized(OTHER_MERCHANT))

    def test_scan_lists_every_policy(self):
        self.store.get_or_create(self.user, NOW)
        self.store.get_or_create(MERCHANT, NOW)

        self.assertEqual(
            sorted(policy.key for policy in self.store.scan()),
            sorted([self.user.lower(), MERCHANT.lower()]),
        )


class InMemoryPolicyStoreTests(PolicyStoreMixin, TestCase):
    def make_store(self, defaults):
        return InMemoryPolicyStore(defaults)


class DatabasePolicyStoreTests(PolicyStoreMixin, TestCase):
    def make_store(self, defaults):
        return DatabasePolicyStore(defaults)

    def test_policy_survives_new_store_instance(self):
        self.store.record_spend(self.user, 42, NOW)

        fresh = DatabasePolicyStore(self.store.defaults)
        self.assertEqual(fresh.get(self.user).spent_today, 42)


class MerchantRegistryTests(TestCase):
    def test_add_and_lookup(self):
        registry = MerchantRegistry()
        registry.add(MerchantInfo(
            address=MERCHANT, name='PayPerie Demo', domain='demo.payperie.io',
            verified=True, category='publishing', max_transaction_limit=5_000_000))

        self.assertTrue(registry.is_whitelisted(MERCHANT.upper().replace('0X', '0x')))
        self.assertEqual(registry.get_by_domain('DEMO.payperie.io').name, 'PayPerie Demo')
        self.assertEqual(registry.get(MERCHANT).max_transaction_limit, 5_000_000)
        self.assertEqual(len(registry.all()), 1)

        self.assertTrue(registry.remove(MERCHANT))
        self.assertIsNone(registry.get(MERCHANT))
        self.assertFalse(registry.remove(MERCHANT))


class PolicyValidatorTests(TestCase):
    def setUp(self) -> None:
        self.payer = Account.create('x402-policy-payer')
        self.store = InMemoryPolicyStore(PolicyDefaults(
            max_transaction_amount=100_000_000,
            daily_spending_limit=500_000_000,
            auto_pay_enabled=False,
        ))
        self.store.authorize_merchant(self.payer.address, MERCHANT, NOW)
        self.validator = PolicyValidator(self.store, MerchantRegistry())

    def _request(self, amount=1_000_000, **kwargs):
        return PaymentRequest.model_validate(
            payment_body(self.payer, MERCHANT, amount, NOW, **kwargs))

    def test_authorized_payment_is_allowed(self):
        result = self.validator.validate(self._request(), NOW)

        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining_daily, 500_000_000 - 1_000_000)

    def test_unauthorized_merchant_is_rejected(self):
        request = PaymentRequest.model_validate(
            payment_body(self.payer, OTHER_MERCHANT, 1_000_000, NOW))

        result = self.validator.validate(request, NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'Merchant not authorized by user')

    def test_auto_pay_authorizes_any_merchant(self):
        self.store.update(self.payer.address, NOW, auto_pay_enabled=True)
        request = PaymentRequest.model_validate(
            payment_body(self.payer, OTHER_MERCHANT, 1_000_000, NOW))

        self.assertTrue(self.validator.validate(request, NOW).allowed)

    def test_amount_over_transaction_limit(self):
        result = self.validator.validate(self._request(amount=100_000_001), NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'Exceeds limit (max: 100000000)')
        self.assertEqual(result.max_allowed, 100_000_000)

    def test_amount_over_daily_limit(self):
        self.store.record_spend(self.payer.address, 450_000_000, NOW)

        result = self.validator.validate(self._request(amount=60_000_000), NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'Exceeds daily limit (remaining: 50000000)')
        self.assertEqual(result.remaining_daily, 50_000_000)

    def test_daily_limit_resets_after_window(self):
        self.store.record_spend(self.payer.address, 500_000_000, NOW)
        later = NOW + ONE_DAY_SECONDS + 1

        request = PaymentRequest.model_validate(
            payment_body(self.payer, MERCHANT, 1_000_000, later))

        self.assertTrue(self.validator.validate(request, later).allowed)

    def test_destination_mismatch_is_rejected(self):
        result = self.validator.validate(self._request(to=OTHER_MERCHANT), NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'Destination mismatch')

    def test_destination_comparison_ignores_case(self):
        request = self._request(to=MERCHANT.upper().replace('0X', '0x'))

        self.assertTrue(self.validator.validate(request, NOW).allowed)

    def test_amount_mismatch_is_rejected(self):
        result = self.validator.validate(self._request(value=999), NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'Amount mismatch')

    def test_from_mismatch_is_rejected(self):
        body = payment_body(self.payer, MERCHANT, 1_000_000, NOW)
        other = Account.create('x402-policy-other').address
        body['userAddress'] = other
        self.store.authorize_merchant(other, MERCHANT, NOW)

        result = self.validator.validate(PaymentRequest.model_validate(body), NOW)

        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, 'From address mismatch')

    def test_validation_does_not_record_spend(self):
        self.validator.validate(self._request(), NOW)

        self.assertEqual(self.store.get(self.payer.address).spent_today, 0)
