import base64
import json

from django.test import SimpleTestCase
from eth_account import Account
from x402.types import PaymentPayload

from facilitator.paywall import (
    build_payment_required,
    decode_payment_header,
    encode_payment_header,
    encode_payment_response,
    validate_payment_amount,
    validate_payment_payload,
)
from facilitator.testing import sign_authorization


NOW = 1_700_000_000
MERCHANT = '0x9999999999999999999999999999999999999999'
BASE_SEPOLIA_USDC = '0x036CbD53842c5426634e7929541eC2318f3dCF7e'


class PaywallTests(SimpleTestCase):
    def setUp(self) -> None:
        self.payer = Account.create('x402-paywall-payer')

    def _payload(self, to=MERCHANT, valid_after=NOW - 60, valid_before=NOW + 600, **overrides):
        authorization, signature = sign_authorization(
            self.payer, to, 1_000_000, valid_after, valid_before)
        payload = {
            'x402Version': 1,
            'scheme': 'exact',
            'network': 'base-sepolia',
            'payload': {
                'signature': signature,
                'authorization': authorization.model_dump(by_alias=True),
            },
        }
        payload.update(overrides)
        return PaymentPayload.model_validate(payload)

    def test_payment_required_body(self):
        body = build_payment_required(
            resource='/buy/article-1',
            amount='1000000',
            description='Article access',
            pay_to=MERCHANT,
            asset=BASE_SEPOLIA_USDC,
            network='base-sepolia',
            extra={'name': 'USDC', 'version': '2'},
        )

        self.assertEqual(body['x402Version'], 1)
        self.assertEqual(body['error'], 'X-PAYMENT header is required')
        requirement = body['accepts'][0]
        self.assertEqual(requirement['scheme'], 'exact')
        self.assertEqual(requirement['maxAmountRequired'], '1000000')
        self.assertEqual(requirement['payTo'], MERCHANT)
        self.assertEqual(requirement['maxTimeoutSeconds'], 300)
        self.assertEqual(requirement['extra'], {'name': 'USDC', 'version': '2'})

    def test_header_round_trip(self):
        payload = self._payload()

        decoded = decode_payment_header(encode_payment_header(payload))

        self.assertEqual(decoded.payload.authorization.nonce, payload.payload.authorization.nonce)
        self.assertEqual(decoded.payload.signature, payload.payload.signature)

    def test_garbage_header_decodes_to_none(self):
        self.assertIsNone(decode_payment_header('not base64 at all!'))
        self.assertIsNone(decode_payment_header(
            base64.b64encode(b'{"x402Version": 1}').decode()))

    def test_payment_response_is_base64_json(self):
        encoded = encode_payment_response({'success': True, 'transaction': '0xabc'})

        self.assertEqual(
            json.loads(base64.b64decode(encoded)), {'success': True, 'transaction': '0xabc'})

    def test_valid_payload(self):
        check = validate_payment_payload(self._payload(), MERCHANT.upper().replace('0X', '0x'), NOW)

        self.assertTrue(check.valid)
        self.assertIsNone(check.error)

    def test_payload_checks(self):
        cases = [
            (self._payload(x402Version=2), 'Unsupported x402 version: 2'),
            (self._payload(to='0x7777777777777777777777777777777777777777'), 'Recipient mismatch'),
            (self._payload(valid_after=NOW + 10, valid_before=NOW + 600), 'Not yet valid'),
            (self._payload(valid_after=NOW - 600, valid_before=NOW - 10), 'Expired'),
        ]
        for payload, error in cases:
            check = validate_payment_payload(payload, MERCHANT, NOW)
            self.assertFalse(check.valid)
            self.assertEqual(check.error, error)

    def test_payment_amount(self):
        self.assertTrue(validate_payment_amount('1000000', '1000000').valid)
        self.assertEqual(
            validate_payment_amount('999', '1000').error, 'Insufficient: 999 < 1000')
