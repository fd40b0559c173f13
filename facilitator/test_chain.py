from unittest import mock

from django.test import SimpleTestCase
from eth_account import Account
from hexbytes import HexBytes
from web3.exceptions import TimeExhausted

from facilitator.chain import ChainClientFactory, ChainError, EvmChainClient, get_chain_id
from facilitator.chain.evm import signature_to_components
from facilitator.testing import USDC_CONTRACT, sign_authorization
from vault.chain import LedgerChainClient


NOW = 1_700_000_000
MERCHANT = '0x9999999999999999999999999999999999999999'
VAULT = '0x000000000000000000000000000000000000a117'


class SignatureComponentsTests(SimpleTestCase):
    def test_low_v_is_normalized(self):
        signature = '0x' + '11' * 32 + '22' * 32 + '00'

        v, r, s = signature_to_components(signature)

        self.assertEqual(v, 27)
        self.assertEqual(r, b'\x11' * 32)
        self.assertEqual(s, b'\x22' * 32)

    def test_high_v_is_kept(self):
        v, _, _ = signature_to_components('0x' + '11' * 64 + '1c')

        self.assertEqual(v, 28)

    def test_wrong_length_is_rejected(self):
        with self.assertRaises(ChainError):
            signature_to_components('0x' + '11' * 64)


class ChainClientFactoryTests(SimpleTestCase):
    def test_create_evm_client(self):
        client = ChainClientFactory.create(' EVM ', {
            'network': 'avalanche-fuji', 'asset_address': USDC_CONTRACT})

        self.assertIsInstance(client, EvmChainClient)
        self.assertEqual(client.chain_id, 43113)

    def test_unsupported_backend(self):
        with self.assertRaisesMessage(ValueError, 'expected one of: evm, ledger'):
            ChainClientFactory.create('solana', {})

    def test_known_chain_ids(self):
        self.assertEqual(get_chain_id('Avalanche-Fuji'), 43113)
        self.assertEqual(get_chain_id('base-sepolia'), 84532)

    def test_ledger_backend_is_registered_by_vault_app(self):
        self.assertIs(ChainClientFactory._clients['ledger'], LedgerChainClient)


class EvmChainClientTests(SimpleTestCase):
    def setUp(self) -> None:
        self.signer = Account.create('x402-evm-signer')
        self.payer = Account.create('x402-evm-payer')
        self.web3 = mock.MagicMock()
        self.web3.eth.get_transaction_count.return_value = 7
        self.web3.eth.gas_price = 25
        self.web3.eth.send_raw_transaction.return_value = HexBytes('0x' + 'ab' * 32)
        self.web3.eth.account.sign_transaction.return_value = mock.Mock(
            raw_transaction=b'raw-tx')

    def _client(self, **overrides) -> EvmChainClient:
        config = {
            'network': 'avalanche-fuji',
            'rpc_url': 'http://localhost:8545',
            'signer_private_key': self.signer.key.hex(),
            'signer_address': self.signer.address,
            'asset_address': USDC_CONTRACT,
            'gas_limit': 250000,
            'tx_timeout_seconds': 10,
        }
        config.update(overrides)
        client = EvmChainClient(config)
        client._web3 = self.web3
        return client

    def _contract_fn(self, name):
        contract_fn = getattr(self.web3.eth.contract.return_value.functions, name).return_value
        contract_fn.estimate_gas.return_value = 100000
        contract_fn.build_transaction.side_effect = lambda params: dict(params)
        return contract_fn

    def test_transfer_with_authorization_uses_legacy_gas_price(self):
        contract_fn = self._contract_fn('transferWithAuthorization')
        authorization, signature = sign_authorization(
            self.payer, MERCHANT, 250000, NOW - 60, NOW + 600)

        tx_hash = self._client().transfer_with_authorization(authorization, signature)

        self.assertEqual(tx_hash, '0x' + 'ab' * 32)
        args = self.web3.eth.contract.return_value.functions.transferWithAuthorization.call_args[0]
        self.assertEqual(args[0], self.payer.address)
        self.assertEqual(args[2:6], (250000, NOW - 60, NOW + 600, HexBytes(authorization.nonce)))
        self.assertIn(args[6], (27, 28))
        contract_fn.build_transaction.assert_called_once_with({
            'chainId': 43113,
            'from': self.signer.address,
            'nonce': 7,
            'gas': 250000,
            'gasPrice': 25,
        })
        self.web3.eth.send_raw_transaction.assert_called_once_with(b'raw-tx')

    def test_eip1559_fees_when_configured(self):
        contract_fn = self._contract_fn('approve')

        self._client(max_fee_per_gas_wei=50, max_priority_fee_per_gas_wei=2).approve(VAULT, 10)

        params = contract_fn.build_transaction.call_args[0][0]
        self.assertEqual(params['maxFeePerGas'], 50)
        self.assertEqual(params['maxPriorityFeePerGas'], 2)
        self.assertNotIn('gasPrice', params)

    def test_settle_payment_targets_vault_contract(self):
        self._contract_fn('settlePayment')

        self._client().settle_payment(VAULT, MERCHANT, 1_000_000)

        self.assertEqual(
            self.web3.eth.contract.call_args.kwargs['address'].lower(), VAULT)

    def test_missing_signer_key(self):
        client = self._client(signer_private_key='')

        with self.assertRaises(ChainError):
            client.approve(VAULT, 10)

    def test_missing_rpc_url(self):
        client = EvmChainClient({'asset_address': USDC_CONTRACT, 'rpc_url': ''})

        with self.assertRaises(ChainError):
            client.balance_of(MERCHANT)

    def test_receipt(self):
        self.web3.eth.wait_for_transaction_receipt.return_value = mock.Mock(
            status=1, blockNumber=5, gasUsed=21000)

        receipt = self._client().wait_for_receipt('0x' + 'ab' * 32)

        self.assertTrue(receipt.succeeded)
        self.assertEqual(receipt.block_number, 5)

    def test_receipt_timeout_is_chain_error(self):
        self.web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted('slow')

        with self.assertRaises(ChainError):
            self._client().wait_for_receipt('0x' + 'ab' * 32)

    def test_explorer_url(self):
        self.assertEqual(
            self._client().get_explorer_url('0xabc'), 'https://testnet.snowtrace.io/tx/0xabc')
