import json
from unittest import mock

from django.apps import apps
from django.test import TestCase, override_settings
from django.urls import reverse
from eth_account import Account

from facilitator.models import PaymentAttempt
from facilitator.services import build_facilitator, chain_config
from facilitator.testing import payment_body
from facilitator.views import FacilitatorAPIView
from vault.chain import LedgerChainClient
from vault.ledger import VaultLedger
from vault.models import LedgerTransaction
from vault.services import build_token


NOW = 1_700_000_000
MERCHANT = '0x9999999999999999999999999999999999999999'
VAULT = '0x000000000000000000000000000000000000a117'
ADMIN = '0x1111111111111111111111111111111111111111'
TREASURY = '0x2222222222222222222222222222222222222222'
AUTHOR = '0x4444444444444444444444444444444444444444'


@override_settings(X402_DEFAULT_AUTO_PAY=False, X402_VAULT_ADDRESS=VAULT)
class X402FacilitatorViewTests(TestCase):
    def setUp(self) -> None:
        self.payer = Account.create('x402-facilitator-payer')

        config = chain_config()
        clock = lambda: NOW  # noqa: E731
        self.ledger = VaultLedger.deploy(
            build_token(config, clock), VAULT, admin=ADMIN, treasury=TREASURY, clock=clock)
        chain = LedgerChainClient(config, ledger=self.ledger, clock=clock)
        self.ledger.grant_role(ADMIN, 'facilitator', chain.operator_address)
        self.ledger.token.mint(self.payer.address, 500_000_000)
        self.operator = chain.operator_address

        self.facilitator = build_facilitator(chain=chain, clock=clock)
        patcher = mock.patch.object(FacilitatorAPIView, 'facilitator', self.facilitator)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, name, data, **kwargs):
        return self.client.post(
            reverse(name, kwargs=kwargs),
            data=json.dumps(data),
            content_type='application/json',
        )

    def _authorize(self, merchant):
        self.facilitator.policies.authorize_merchant(self.payer.address, merchant, NOW)

    def test_pay_settles_through_vault(self):
        self._authorize(self.operator)
        body = payment_body(self.payer, self.operator, 1_000_000, NOW, recipient=AUTHOR)

        response = self._post('facilitator:pay', body)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['success'])
        self.assertEqual(data['transactionHash'], PaymentAttempt.objects.get().settlement_tx_hash)
        self.assertEqual(data['details']['recipient'], AUTHOR)
        self.assertEqual(self.ledger.get_profile(AUTHOR).locked_balance, 891_000)

        policy = self.client.get(
            reverse('facilitator:policy', kwargs={'address': self.payer.address})).json()
        self.assertEqual(policy['spentToday'], '1000000')
        self.assertEqual(policy['remainingDailyAllowance'], '499000000')

    def test_pay_without_recipient_pays_merchant_directly(self):
        self._authorize(MERCHANT)

        response = self._post('facilitator:pay', payment_body(self.payer, MERCHANT, 2_500_000, NOW))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.ledger.token.balance_of(MERCHANT), 2_500_000)
        self.assertNotIn('recipient', response.json()['details'])

    def test_challenge_payment_timeout_is_accepted_and_ignored(self):
        self._authorize(MERCHANT)
        body = payment_body(self.payer, MERCHANT, 1_000_000, NOW)
        body['challenge']['timeoutSeconds'] = 300

        response = self._post('facilitator:pay', body)

        self.assertEqual(response.status_code, 200)
        self.assertNotIn('timeoutSeconds', PaymentAttempt.objects.get().payment_request['challenge'])

    def test_malformed_request_returns_400(self):
        response = self._post('facilitator:pay', {'userAddress': 'nope'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errorCode'], 'MALFORMED_REQUEST')
        self.assertFalse(response.json()['success'])

    def test_oversized_fields_are_malformed_not_server_errors(self):
        self._authorize(MERCHANT)
        long_signature = payment_body(self.payer, MERCHANT, 1_000_000, NOW)
        long_signature['signedPayload']['signature'] += 'ab' * 40
        non_hex_signature = payment_body(self.payer, MERCHANT, 1_000_000, NOW)
        non_hex_signature['signedPayload']['signature'] = '0x' + 'zz' * 65
        huge_value = payment_body(self.payer, MERCHANT, 1_000_000, NOW)
        huge_value['signedPayload']['authorization']['value'] = str(2 ** 256)
        huge_value['challenge']['amount'] = str(2 ** 256)

        for body in (long_signature, non_hex_signature, huge_value):
            response = self._post('facilitator:pay', body)

            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()['errorCode'], 'MALFORMED_REQUEST')
        self.assertFalse(PaymentAttempt.objects.exists())

    def test_unauthorized_merchant_returns_403(self):
        response = self._post('facilitator:pay', payment_body(self.payer, MERCHANT, 1_000_000, NOW))

        self.assertEqual(response.status_code, 403)
        data = response.json()
        self.assertEqual(data['errorCode'], 'POLICY_VIOLATION')
        self.assertEqual(data['error'], 'Merchant not authorized by user')
        self.assertIsNone(data['transactionHash'])

    def test_limit_violation_carries_limit(self):
        self._authorize(MERCHANT)

        response = self._post(
            'facilitator:pay', payment_body(self.payer, MERCHANT, 150_000_000, NOW))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['details'], {'maxAllowed': '100000000'})

    def test_destination_mismatch_rejected_before_any_chain_call(self):
        self._authorize(MERCHANT)
        body = payment_body(
            self.payer, MERCHANT, 1_000_000, NOW, to='0x7777777777777777777777777777777777777777')

        with mock.patch.object(self.facilitator.chain, 'balance_of') as balance_of:
            response = self._post('facilitator:pay', body)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'Destination mismatch')
        balance_of.assert_not_called()
        self.assertEqual(LedgerTransaction.objects.count(), 0)
        self.assertEqual(PaymentAttempt.objects.count(), 0)

    def test_expired_authorization_returns_400(self):
        self._authorize(MERCHANT)
        body = payment_body(
            self.payer, MERCHANT, 1_000_000, NOW, valid_after=NOW - 600, valid_before=NOW - 1)

        response = self._post('facilitator:pay', body)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errorCode'], 'EXPIRED')

    def test_failed_payment_does_not_record_spend(self):
        self._authorize(MERCHANT)
        self._post('facilitator:pay', payment_body(
            self.payer, MERCHANT, 1_000_000, NOW, valid_after=NOW - 600, valid_before=NOW - 1))

        policy = self.facilitator.policies.get(self.payer.address)
        self.assertEqual(policy.spent_today, 0)

    def test_missing_facilitator_returns_500(self):
        app_config = apps.get_app_config('facilitator')
        with mock.patch.object(FacilitatorAPIView, 'facilitator', None), \
                mock.patch.object(app_config, 'facilitator', None):
            response = self._post(
                'facilitator:pay', payment_body(self.payer, MERCHANT, 1_000_000, NOW))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Facilitator misconfiguration.')

    def test_unexpected_error_returns_500_without_details(self):
        with mock.patch.object(
                self.facilitator, 'process_payment', side_effect=RuntimeError('secret')):
            response = self._post(
                'facilitator:pay', payment_body(self.payer, MERCHANT, 1_000_000, NOW))

        self.assertEqual(response.status_code, 500)
        self.assertNotIn('secret', response.content.decode())

    def test_get_policy_creates_defaults(self):
        response = self.client.get(
            reverse('facilitator:policy', kwargs={'address': self.payer.address}))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['maxTransactionAmount'], '100000000')
        self.assertEqual(data['dailySpendingLimit'], '500000000')
        self.assertEqual(data['remainingDailyAllowance'], '500000000')
        self.assertFalse(data['autoPayEnabled'])

    def test_policy_rejects_invalid_address(self):
        response = self.client.get(reverse('facilitator:policy', kwargs={'address': '0x123'}))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid user address')

    def test_update_policy(self):
        response = self._post(
            'facilitator:policy',
            {'dailySpendingLimit': '20000000', 'autoPayEnabled': True},
            address=self.payer.address,
        )

        self.assertEqual(response.status_code, 200)
        policy = response.json()['policy']
        self.assertEqual(policy['dailySpendingLimit'], '20000000')
        self.assertEqual(policy['maxTransactionAmount'], '100000000')
        self.assertTrue(policy['autoPayEnabled'])

    def test_update_policy_rejects_bad_amount(self):
        response = self._post(
            'facilitator:policy', {'maxTransactionAmount': '-5'}, address=self.payer.address)

        self.assertEqual(response.status_code, 400)

    def test_authorize_merchant_and_domain(self):
        response = self._post(
            'facilitator:authorize-merchant',
            {'merchantAddress': MERCHANT, 'domain': 'Demo.PayPerie.io'},
            address=self.payer.address,
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['authorizedMerchants'], [MERCHANT])
        self.assertEqual(data['authorizedDomains'], ['demo.payperie.io'])

    def test_authorize_merchant_requires_a_target(self):
        response = self._post(
            'facilitator:authorize-merchant', {}, address=self.payer.address)

        self.assertEqual(response.status_code, 400)

    def test_merchant_whitelist_endpoints(self):
        entry = {
            'address': MERCHANT,
            'name': 'PayPerie Demo',
            'domain': 'demo.payperie.io',
            'verified': True,
            'maxTransactionLimit': '5000000',
        }

        created = self._post('facilitator:merchants', entry)
        duplicate = self._post('facilitator:merchants', entry)
        listed = self.client.get(reverse('facilitator:merchants'))
        detail = self.client.get(reverse('facilitator:merchant', kwargs={'address': MERCHANT}))
        missing = self.client.get(reverse(
            'facilitator:merchant', kwargs={'address': '0x7777777777777777777777777777777777777777'}))

        self.assertEqual(created.status_code, 200)
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(len(listed.json()['merchants']), 1)
        self.assertEqual(detail.json()['merchant']['maxTransactionLimit'], '5000000')
        self.assertEqual(missing.status_code, 404)

    def test_merchant_entry_requires_fields(self):
        response = self._post('facilitator:merchants', {'address': MERCHANT})

        self.assertEqual(response.status_code, 400)


class HealthViewTests(TestCase):
    def test_health(self):
        response = self.client.get(reverse('health'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')
