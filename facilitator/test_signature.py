from unittest import mock

from django.test import SimpleTestCase
from eth_account import Account

from facilitator.authorization import AuthorizationValidator
from facilitator.chain import ChainError
from facilitator.signature import SignatureVerifier, TypedDataDomain
from facilitator.testing import FUJI_DOMAIN, sign_authorization
from facilitator.types import ErrorKind, PaymentError


NOW = 1_700_000_000
MERCHANT = '0x9999999999999999999999999999999999999999'


class SignatureVerifierTests(SimpleTestCase):
    def setUp(self) -> None:
        self.payer = Account.create('x402-signature-payer')
        self.verifier = SignatureVerifier(FUJI_DOMAIN)

    def test_valid_signature_recovers_payer(self):
        authorization, signature = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600)

        result = self.verifier.verify(authorization, signature)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.payer, self.payer.address)
        self.assertIsNone(result.invalid_reason)

    def test_signature_from_other_key_is_a_mismatch(self):
        other = Account.create('x402-signature-other')
        authorization, _ = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600)
        _, forged = sign_authorization(
            other, MERCHANT, 250000, NOW - 60, NOW + 600, nonce=authorization.nonce)

        result = self.verifier.verify(authorization, forged)

        self.assertFalse(result.is_valid)
        self.assertIn('Signature mismatch', result.invalid_reason)

    def test_signature_for_other_domain_is_rejected(self):
        base_domain = TypedDataDomain(
            name='USD Coin', version='2', chain_id=84532,
            verifying_contract='0x036CbD53842c5426634e7929541eC2318f3dCF7e')
        authorization, signature = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600, domain=base_domain)

        result = self.verifier.verify(authorization, signature)

        self.assertFalse(result.is_valid)

    def test_tampered_value_is_rejected(self):
        authorization, signature = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600)
        tampered = authorization.model_copy(update={'value': '999999'})

        self.assertFalse(self.verifier.verify(tampered, signature).is_valid)

    def test_garbage_signature_never_raises(self):
        authorization, _ = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600)

        for signature in ('', '0x', '0x1234', 'not-hex', '0x' + '00' * 65):
            result = self.verifier.verify(authorization, signature)
            self.assertFalse(result.is_valid, signature)
            self.assertTrue(result.invalid_reason)


class AuthorizationValidatorTests(SimpleTestCase):
    def setUp(self) -> None:
        self.payer = Account.create('x402-validator-payer')
        self.chain = mock.Mock()
        self.chain.balance_of.return_value = 10_000_000
        self.chain.authorization_state.return_value = False
        self.validator = AuthorizationValidator(self.chain, SignatureVerifier(FUJI_DOMAIN))

    def _authorization(self, **kwargs):
        params = {
            'to': MERCHANT,
            'value': 250000,
            'valid_after': NOW - 60,
            'valid_before': NOW + 600,
        }
        params.update(kwargs)
        return sign_authorization(self.payer, **params)

    def test_valid_authorization_returns_payer(self):
        authorization, signature = self._authorization()

        payer = self.validator.validate(authorization, signature, NOW)

        self.assertEqual(payer, self.payer.address)
        self.chain.balance_of.assert_called_once_with(self.payer.address)
        self.chain.authorization_state.assert_called_once_with(
            self.payer.address, authorization.nonce)

    def test_expired_authorization_skips_chain_reads(self):
        authorization, signature = self._authorization(
            valid_after=NOW - 600, valid_before=NOW - 1)

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.EXPIRED)
        self.assertIn('Valid before', ctx.exception.message)
        self.assertEqual(self.chain.balance_of.call_count, 0)
        self.assertEqual(self.chain.authorization_state.call_count, 0)

    def test_not_yet_valid_authorization(self):
        authorization, signature = self._authorization(
            valid_after=NOW + 60, valid_before=NOW + 600)

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.EXPIRED)
        self.assertIn('not yet valid', ctx.exception.message)

    def test_window_bounds_are_inclusive(self):
        authorization, signature = self._authorization(
            valid_after=NOW, valid_before=NOW + 10)
        self.validator.validate(authorization, signature, NOW)

        authorization, signature = self._authorization(
            valid_after=NOW - 10, valid_before=NOW)
        self.validator.validate(authorization, signature, NOW)

    def test_empty_window_is_expired(self):
        authorization, signature = self._authorization(
            valid_after=NOW, valid_before=NOW)

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.EXPIRED)

    def test_bad_signature_skips_chain_reads(self):
        authorization, _ = self._authorization()

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, '0x' + '11' * 65, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_SIGNATURE)
        self.chain.balance_of.assert_not_called()

    def test_insufficient_balance_reports_amounts(self):
        self.chain.balance_of.return_value = 1000
        authorization, signature = self._authorization()

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.INSUFFICIENT_BALANCE)
        self.assertEqual(ctx.exception.details, {'required': '250000', 'available': '1000'})
        self.chain.authorization_state.assert_not_called()

    def test_used_nonce_is_a_transaction_failure(self):
        self.chain.authorization_state.return_value = True
        authorization, signature = self._authorization()

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSACTION_FAILED)
        self.assertEqual(ctx.exception.message, 'Authorization nonce already used')

    def test_nonce_lookup_error_fails_closed(self):
        self.chain.authorization_state.side_effect = ChainError('rpc down')
        authorization, signature = self._authorization()

        with self.assertRaises(PaymentError) as ctx:
            self.validator.validate(authorization, signature, NOW)

        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSACTION_FAILED)
