from unittest import mock

from django.test import TestCase
from eth_account import Account

from facilitator.authorization import AuthorizationValidator
from facilitator.chain import MAX_UINT256, ChainError
from facilitator.executor import PaymentExecutor
from facilitator.models import PaymentAttempt
from facilitator.services import chain_config
from facilitator.signature import SignatureVerifier
from facilitator.testing import FUJI_DOMAIN, payment_body
from facilitator.types import ErrorKind, PaymentRequest
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
IMPOSTOR_RECIPIENT = '0x5555555555555555555555555555555555555555'


class PaymentExecutorTests(TestCase):
    def setUp(self) -> None:
        self.now = NOW
        self.payer = Account.create('x402-executor-payer')

        config = chain_config()
        self.ledger = VaultLedger.deploy(
            build_token(config, self.clock), VAULT,
            admin=ADMIN, treasury=TREASURY, protocol_fee_bps=100, clock=self.clock)
        self.chain = LedgerChainClient(config, ledger=self.ledger, clock=self.clock)
        self.operator = self.chain.operator_address
        self.token = self.ledger.token
        self.token.mint(self.payer.address, 5_000_000)

    def clock(self) -> int:
        return self.now

    def _executor(self, vault_address=VAULT) -> PaymentExecutor:
        validator = AuthorizationValidator(self.chain, SignatureVerifier(FUJI_DOMAIN))
        return PaymentExecutor(self.chain, validator, vault_address=vault_address, clock=self.clock)

    def _request(self, merchant=MERCHANT, amount=1_000_000, **kwargs) -> PaymentRequest:
        return PaymentRequest.model_validate(
            payment_body(self.payer, merchant, amount, self.now, **kwargs))

    def _methods(self):
        return list(LedgerTransaction.objects.values_list('method', 'status'))

    def test_direct_payment_settles_on_collection(self):
        result = self._executor(vault_address='').execute(self._request())

        self.assertTrue(result.success, result.error)
        self.assertEqual(self.token.balance_of(MERCHANT), 1_000_000)
        self.assertEqual(self.token.balance_of(self.payer.address), 4_000_000)
        self.assertEqual(self._methods(), [('transferWithAuthorization', 1)])

        attempt = PaymentAttempt.objects.get()
        self.assertEqual(attempt.status, PaymentAttempt.Status.SETTLED)
        self.assertEqual(result.transaction_hash, attempt.collection_tx_hash)
        self.assertEqual(result.details['amount'], '1000000')
        self.assertNotIn('recipient', result.details)

    def test_vault_route_collects_approves_and_settles(self):
        self.ledger.grant_role(ADMIN, 'facilitator', self.operator)

        result = self._executor().execute(
            self._request(merchant=self.operator, recipient=AUTHOR))

        self.assertTrue(result.success, result.error)
        self.assertEqual(self._methods(), [
            ('transferWithAuthorization', 1),
            ('approve', 1),
            ('settlePayment', 1),
        ])
        attempt = PaymentAttempt.objects.get()
        self.assertEqual(result.transaction_hash, attempt.settlement_tx_hash)
        self.assertEqual(result.details['recipient'], AUTHOR)
        self.assertEqual(result.details['collectionTransaction'], attempt.collection_tx_hash)

        self.assertEqual(self.token.balance_of(self.operator), 0)
        self.assertEqual(self.token.balance_of(TREASURY), 10_000)
        self.assertEqual(self.token.balance_of(VAULT), 990_000)
        self.assertEqual(self.token.allowance(self.operator, VAULT), MAX_UINT256)
        profile = self.ledger.get_profile(AUTHOR)
        self.assertEqual(profile.available_balance, 99_000)
        self.assertEqual(profile.locked_balance, 891_000)

    def test_existing_allowance_skips_approve(self):
        self.ledger.grant_role(ADMIN, 'facilitator', self.operator)
        executor = self._executor()
        executor.execute(self._request(merchant=self.operator, recipient=AUTHOR))

        result = executor.execute(self._request(merchant=self.operator, recipient=AUTHOR))

        self.assertTrue(result.success, result.error)
        self.assertEqual([method for method, _ in self._methods()].count('approve'), 1)
        self.assertEqual(PaymentAttempt.objects.filter(
            approval_tx_hash__isnull=True, status='settled').count(), 1)

    def test_replayed_request_succeeds_at_most_once(self):
        request = self._request()
        executor = self._executor(vault_address='')
        first = executor.execute(request)

        second = executor.execute(request)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error_kind, ErrorKind.TRANSACTION_FAILED)
        self.assertEqual(second.error, 'Authorization nonce already used')
        self.assertEqual(second.transaction_hash, first.transaction_hash)
        self.assertEqual(LedgerTransaction.objects.count(), 1)
        self.assertEqual(self.token.balance_of(MERCHANT), 1_000_000)

    def test_replay_without_checkpoint_is_caught_by_token_state(self):
        request = self._request()
        executor = self._executor(vault_address='')
        executor.execute(request)
        PaymentAttempt.objects.all().delete()

        result = executor.execute(request)

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'Authorization nonce already used')
        self.assertEqual(LedgerTransaction.objects.count(), 1)

    def test_expired_authorization_submits_nothing(self):
        request = self._request(valid_after=NOW - 600, valid_before=NOW - 1)

        result = self._executor().execute(request)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.EXPIRED)
        self.assertIsNone(result.transaction_hash)
        self.assertEqual(LedgerTransaction.objects.count(), 0)
        attempt = PaymentAttempt.objects.get()
        self.assertEqual(attempt.status, PaymentAttempt.Status.FAILED)
        self.assertEqual(attempt.checkpoint, PaymentAttempt.Status.RECEIVED)

    def test_insufficient_balance(self):
        result = self._executor().execute(self._request(amount=6_000_000))

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.INSUFFICIENT_BALANCE)
        self.assertEqual(result.details['available'], '5000000')

    def test_settlement_revert_reports_partial_hashes_and_resumes(self):
        # Operator lacks the facilitator role, so settlePayment reverts.
        request = self._request(merchant=self.operator, recipient=AUTHOR)
        executor = self._executor()

        failed = executor.execute(request)

        self.assertFalse(failed.success)
        self.assertEqual(failed.error_kind, ErrorKind.TRANSACTION_FAILED)
        attempt = PaymentAttempt.objects.get()
        self.assertEqual(attempt.status, PaymentAttempt.Status.FAILED)
        self.assertEqual(attempt.checkpoint, PaymentAttempt.Status.APPROVED)
        self.assertEqual(failed.transaction_hash, attempt.settlement_tx_hash)
        self.assertEqual(failed.details['collectionTransaction'], attempt.collection_tx_hash)
        self.assertEqual(self.token.balance_of(self.operator), 1_000_000)

        self.ledger.grant_role(ADMIN, 'facilitator', self.operator)
        resumed = executor.execute(request)

        self.assertTrue(resumed.success, resumed.error)
        self.assertEqual(self._methods(), [
            ('transferWithAuthorization', 1),
            ('approve', 1),
            ('settlePayment', 0),
            ('settlePayment', 1),
        ])
        self.assertEqual(self.ledger.get_profile(AUTHOR).available_balance, 99_000)

    def test_resume_with_different_terms_is_rejected(self):
        nonce = '0x' + 'ab' * 32
        executor = self._executor()
        executor.execute(self._request(merchant=self.operator, recipient=AUTHOR, nonce=nonce))

        result = executor.execute(self._request(
            merchant=self.operator, recipient=AUTHOR, nonce=nonce, amount=2_000_000))

        self.assertFalse(result.success)
        self.assertIn('different terms', result.error)
        self.assertEqual(
            [method for method, _ in self._methods()].count('transferWithAuthorization'), 1)

    def test_rejected_request_leaves_no_terms_behind(self):
        self.ledger.grant_role(ADMIN, 'facilitator', self.operator)
        nonce = '0x' + 'cd' * 32
        impostor = Account.create('x402-executor-impostor')
        forged = payment_body(
            impostor, self.operator, 3_000_000, self.now,
            recipient=IMPOSTOR_RECIPIENT, nonce=nonce)
        forged['userAddress'] = self.payer.address
        forged['signedPayload']['authorization']['from'] = self.payer.address
        executor = self._executor()

        rejected = executor.execute(PaymentRequest.model_validate(forged))
        accepted = executor.execute(
            self._request(merchant=self.operator, recipient=AUTHOR, nonce=nonce))

        self.assertEqual(rejected.error_kind, ErrorKind.INVALID_SIGNATURE)
        self.assertTrue(accepted.success, accepted.error)
        self.assertEqual(accepted.details['amount'], '1000000')
        self.assertEqual(accepted.details['recipient'], AUTHOR)
        self.assertEqual(self.token.balance_of(self.payer.address), 4_000_000)
        self.assertEqual(self.token.balance_of(VAULT), 990_000)

        author = self.ledger.get_profile(AUTHOR)
        self.assertEqual((author.available_balance, author.locked_balance), (99_000, 891_000))
        other = self.ledger.get_profile(IMPOSTOR_RECIPIENT)
        self.assertEqual((other.available_balance, other.locked_balance), (0, 0))

        attempt = PaymentAttempt.objects.get()
        self.assertEqual(attempt.value, '1000000')
        self.assertEqual(attempt.recipient, AUTHOR)

    def test_resume_with_different_recipient_is_rejected(self):
        nonce = '0x' + 'ef' * 32
        executor = self._executor()
        executor.execute(self._request(merchant=self.operator, recipient=AUTHOR, nonce=nonce))
        self.ledger.grant_role(ADMIN, 'facilitator', self.operator)

        result = executor.execute(self._request(
            merchant=self.operator, recipient=IMPOSTOR_RECIPIENT, nonce=nonce))

        self.assertFalse(result.success)
        self.assertIn('different terms', result.error)
        self.assertEqual(self.ledger.get_profile(IMPOSTOR_RECIPIENT).locked_balance, 0)
        self.assertEqual(self.token.balance_of(self.operator), 1_000_000)

    def test_unbounded_validity_is_stored_clamped(self):
        result = self._executor(vault_address='').execute(
            self._request(valid_before=MAX_UINT256))

        self.assertTrue(result.success, result.error)
        self.assertEqual(PaymentAttempt.objects.get().valid_before.year, 9999)

    def test_receipt_error_keeps_collection_hash(self):
        with mock.patch.object(
                self.chain, 'wait_for_receipt', side_effect=ChainError('Timed out')):
            result = self._executor(vault_address='').execute(self._request())

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.TRANSACTION_FAILED)
        attempt = PaymentAttempt.objects.get()
        self.assertEqual(result.transaction_hash, attempt.collection_tx_hash)
        self.assertEqual(attempt.checkpoint, PaymentAttempt.Status.VALIDATED)

    def test_unexpected_chain_exception_becomes_transaction_failure(self):
        with mock.patch.object(
                self.chain, 'transfer_with_authorization', side_effect=RuntimeError('boom')):
            result = self._executor(vault_address='').execute(self._request())

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.TRANSACTION_FAILED)
        self.assertIn('boom', result.error)
