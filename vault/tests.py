import random
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from eth_account import Account

from facilitator.chain import MAX_UINT256, ChainError
from facilitator.services import chain_config
from facilitator.testing import sign_authorization
from vault.chain import LedgerChainClient
from vault.errors import (
    AccessControlError,
    AuthorizationError,
    InsufficientFunds,
    InvalidConfiguration,
    InvalidSettlement,
    NothingToClaim,
    ReentrancyError,
)
from vault.ledger import VaultLedger
from vault.models import AuthorProfile, LedgerTransaction, VaultEvent, VaultState
from vault.services import build_token
from vault.tiers import ONE_DAY_SECONDS, TIER_RULES, Tier, TierRule, compute_fee, split_income
from vault.token import LedgerToken


NOW = 1_700_000_000
VAULT = '0x000000000000000000000000000000000000a117'
ADMIN = '0x1111111111111111111111111111111111111111'
TREASURY = '0x2222222222222222222222222222222222222222'
FACILITATOR = '0x3333333333333333333333333333333333333333'
AUTHOR = '0x4444444444444444444444444444444444444444'
STRANGER = '0x5555555555555555555555555555555555555555'
ZERO = '0x0000000000000000000000000000000000000000'


class TierArithmeticTests(SimpleTestCase):
    def test_fee_and_net_always_sum_to_amount(self):
        rng = random.Random(402)
        for _ in range(500):
            amount = rng.randrange(0, 10 ** 15)
            fee_bps = rng.randrange(0, 10_001)
            fee, net = compute_fee(amount, fee_bps)
            self.assertEqual(fee, amount * fee_bps // 10_000)
            self.assertEqual(fee + net, amount)

    def test_fee_edges(self):
        self.assertEqual(compute_fee(0, 100), (0, 0))
        self.assertEqual(compute_fee(99, 100), (0, 99))
        self.assertEqual(compute_fee(1_000_000_000, 10_000), (1_000_000_000, 0))
        with self.assertRaises(ValueError):
            compute_fee(1, 10_001)

    def test_split_always_sums_to_net(self):
        rng = random.Random(3009)
        for _ in range(500):
            net = rng.randrange(0, 10 ** 15)
            rule = TierRule(rng.randrange(0, 10_001), rng.randrange(0, 30 * ONE_DAY_SECONDS))
            released, locked = split_income(net, rule)
            self.assertEqual(released, net * rule.immediate_release_bps // 10_000)
            self.assertEqual(released + locked, net)

    def test_tier_rules(self):
        self.assertEqual(TIER_RULES[Tier.TIER0], TierRule(1000, 15 * ONE_DAY_SECONDS))
        self.assertEqual(TIER_RULES[Tier.TIER1], TierRule(5000, 7 * ONE_DAY_SECONDS))
        self.assertEqual(TIER_RULES[Tier.CERTIFIED], TierRule(9000, ONE_DAY_SECONDS))

    def test_rounding_dust_is_locked(self):
        self.assertEqual(split_income(999, TIER_RULES[Tier.TIER1]), (499, 500))


class VaultLedgerTestCase(TestCase):
    def setUp(self) -> None:
        self.now = NOW
        self.token = build_token(chain_config(), self.clock)
        self.ledger = VaultLedger.deploy(
            self.token, VAULT, admin=ADMIN, treasury=TREASURY,
            protocol_fee_bps=100, clock=self.clock)
        self.ledger.grant_role(ADMIN, 'facilitator', FACILITATOR)
        self.token.mint(FACILITATOR, 10_000_000_000)
        self.token.approve(FACILITATOR, VAULT, MAX_UINT256)

    def clock(self) -> int:
        return self.now


class VaultSettlementTests(VaultLedgerTestCase):
    def test_tier1_settlement(self):
        self.ledger.set_author_tier(ADMIN, AUTHOR, Tier.TIER1)

        settlement = self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000_000)

        self.assertEqual(settlement.fee, 10_000_000)
        self.assertEqual(settlement.net_income, 990_000_000)
        self.assertEqual(settlement.released, 495_000_000)
        self.assertEqual(settlement.locked, 495_000_000)
        self.assertEqual(settlement.unlock_time, NOW + 7 * ONE_DAY_SECONDS)

        event = VaultEvent.objects.filter(name=VaultEvent.Name.PAYMENT_SETTLED).get()
        self.assertEqual(event.args, {
            'author': AUTHOR,
            'amount': '1000000000',
            'fee': '10000000',
            'lock': '495000000',
        })
        self.assertEqual(self.token.balance_of(TREASURY), 10_000_000)
        self.assertEqual(self.token.balance_of(VAULT), 990_000_000)

    def test_tier0_vesting_and_claims(self):
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000_000)
        profile = self.ledger.get_profile(AUTHOR)
        self.assertEqual(profile.tier, Tier.TIER0)
        self.assertEqual(profile.available_balance, 99_000_000)
        self.assertEqual(profile.locked_balance, 891_000_000)

        self.now = NOW + 14 * ONE_DAY_SECONDS
        self.assertEqual(self.ledger.claim_revenue(AUTHOR), 99_000_000)
        profile = self.ledger.get_profile(AUTHOR)
        self.assertEqual(profile.available_balance, 0)
        self.assertEqual(profile.locked_balance, 891_000_000)

        self.now = NOW + 15 * ONE_DAY_SECONDS + 1
        self.assertEqual(self.ledger.claim_revenue(AUTHOR), 891_000_000)
        profile = self.ledger.get_profile(AUTHOR)
        self.assertEqual(profile.available_balance, 0)
        self.assertEqual(profile.locked_balance, 0)
        self.assertEqual(self.token.balance_of(AUTHOR), 990_000_000)
        self.assertEqual(VaultEvent.objects.filter(name='RevenueClaimed').count(), 2)

    def test_claim_at_unlock_time_releases_everything(self):
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)
        self.now = NOW + 15 * ONE_DAY_SECONDS

        self.assertEqual(self.ledger.claim_revenue(AUTHOR), 990_000)

    def test_nothing_to_claim_mutates_nothing(self):
        with self.assertRaises(NothingToClaim):
            self.ledger.claim_revenue(AUTHOR)
        self.assertFalse(AuthorProfile.objects.exists())

        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)
        self.ledger.claim_revenue(AUTHOR)
        before = self.ledger.get_profile(AUTHOR)
        events = VaultEvent.objects.count()

        with self.assertRaises(NothingToClaim):
            self.ledger.claim_revenue(AUTHOR)

        self.assertEqual(self.ledger.get_profile(AUTHOR), before)
        self.assertEqual(VaultEvent.objects.count(), events)

    def test_unlock_time_never_moves_back(self):
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)
        self.ledger.set_author_tier(ADMIN, AUTHOR, Tier.CERTIFIED)
        self.now = NOW + 60

        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)

        self.assertEqual(
            self.ledger.get_profile(AUTHOR).unlock_time, NOW + 15 * ONE_DAY_SECONDS)

    def test_later_tranche_extends_unlock_time(self):
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)
        self.now = NOW + ONE_DAY_SECONDS

        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)

        profile = self.ledger.get_profile(AUTHOR)
        self.assertEqual(profile.unlock_time, NOW + 16 * ONE_DAY_SECONDS)
        self.assertEqual(profile.locked_balance, 2 * 891_000)

    def test_zero_fee_skips_treasury_transfer(self):
        self.ledger.set_protocol_fee_bps(ADMIN, 0)

        settlement = self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000)

        self.assertEqual(settlement.fee, 0)
        self.assertEqual(self.token.balance_of(TREASURY), 0)

    def test_rejects_zero_amount_and_zero_recipient(self):
        with self.assertRaises(InvalidSettlement):
            self.ledger.settle_payment(FACILITATOR, AUTHOR, 0)
        with self.assertRaises(InvalidSettlement):
            self.ledger.settle_payment(FACILITATOR, ZERO, 1_000)
        self.assertFalse(VaultEvent.objects.filter(name='PaymentSettled').exists())

    def test_failed_pull_leaves_no_state(self):
        self.token.approve(FACILITATOR, VAULT, 500)

        with self.assertRaises(InsufficientFunds):
            self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000)

        self.assertFalse(AuthorProfile.objects.exists())
        self.assertEqual(self.token.balance_of(VAULT), 0)
        self.assertEqual(self.token.allowance(FACILITATOR, VAULT), 500)

    def test_get_profile_never_creates_rows(self):
        profile = self.ledger.get_profile(AUTHOR)

        self.assertEqual(profile.tier, Tier.TIER0)
        self.assertEqual(profile.to_dict()['availableBalance'], '0')
        self.assertFalse(AuthorProfile.objects.exists())


class VaultAccessControlTests(VaultLedgerTestCase):
    def test_stranger_cannot_settle(self):
        with self.assertRaises(AccessControlError) as ctx:
            self.ledger.settle_payment(STRANGER, AUTHOR, 1_000)

        self.assertEqual(
            str(ctx.exception),
            f'AccessControl: account {STRANGER} is missing role FACILITATOR_ROLE')

    def test_admin_operations_require_admin(self):
        for call in (
            lambda: self.ledger.set_author_tier(FACILITATOR, AUTHOR, Tier.TIER1),
            lambda: self.ledger.set_treasury(FACILITATOR, STRANGER),
            lambda: self.ledger.set_protocol_fee_bps(FACILITATOR, 0),
            lambda: self.ledger.grant_role(FACILITATOR, 'facilitator', STRANGER),
        ):
            with self.assertRaises(AccessControlError):
                call()

    def test_revoked_facilitator_cannot_settle(self):
        self.ledger.revoke_role(ADMIN, 'facilitator', FACILITATOR)

        self.assertFalse(self.ledger.has_role(FACILITATOR, 'facilitator'))
        with self.assertRaises(AccessControlError):
            self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000)

    def test_admin_setters(self):
        self.ledger.set_treasury(ADMIN, STRANGER)
        self.ledger.set_protocol_fee_bps(ADMIN, 250)

        state = VaultState.objects.get()
        self.assertEqual(state.treasury, STRANGER)
        self.assertEqual(state.protocol_fee_bps, 250)
        self.assertEqual(self.ledger.settle_payment(FACILITATOR, AUTHOR, 10_000).fee, 250)
        self.assertEqual(self.token.balance_of(STRANGER), 250)

    def test_admin_setters_validate_input(self):
        with self.assertRaises(InvalidConfiguration):
            self.ledger.set_treasury(ADMIN, ZERO)
        with self.assertRaises(InvalidConfiguration):
            self.ledger.set_protocol_fee_bps(ADMIN, 10_001)
        with self.assertRaises(InvalidConfiguration):
            self.ledger.set_author_tier(ADMIN, AUTHOR, 7)

    def test_deploy_is_idempotent(self):
        again = VaultLedger.deploy(
            self.token, VAULT, admin=STRANGER, treasury=STRANGER, protocol_fee_bps=0)

        self.assertEqual(VaultState.objects.count(), 1)
        self.assertEqual(again.describe()['treasury'], TREASURY)
        self.assertFalse(again.has_role(STRANGER, 'admin'))

    def test_undeployed_vault(self):
        ledger = VaultLedger(self.token, '0x000000000000000000000000000000000000b0b0')

        with self.assertRaises(InvalidConfiguration):
            ledger.describe()


class ReentrantToken(LedgerToken):
    """Token whose transfers call back into the vault."""

    ledger = None

    def transfer(self, sender, to, amount):
        self.ledger.claim_revenue(to)


class VaultReentrancyTests(VaultLedgerTestCase):
    def test_reentrant_claim_is_rejected(self):
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)
        token = ReentrantToken(self.token.address, self.token.verifier, self.clock)
        ledger = VaultLedger(token, VAULT, self.clock)
        token.ledger = ledger

        with self.assertRaises(ReentrancyError):
            ledger.claim_revenue(AUTHOR)

        self.assertEqual(self.ledger.get_profile(AUTHOR).available_balance, 99_000)

    def test_guard_is_released_after_a_revert(self):
        with self.assertRaises(NothingToClaim):
            self.ledger.claim_revenue(AUTHOR)

        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000)


class LedgerTokenTests(VaultLedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.payer = Account.create('x402-token-payer')
        self.token.mint(self.payer.address, 1_000_000)

    def _signed(self, **kwargs):
        params = {'to': AUTHOR, 'value': 400_000, 'valid_after': NOW - 60, 'valid_before': NOW + 600}
        params.update(kwargs)
        return sign_authorization(self.payer, **params)

    def test_transfer_with_authorization_uses_nonce_once(self):
        authorization, signature = self._signed()

        self.token.transfer_with_authorization(authorization, signature)

        self.assertTrue(self.token.authorization_state(self.payer.address, authorization.nonce))
        self.assertEqual(self.token.balance_of(AUTHOR), 400_000)
        with self.assertRaisesMessage(AuthorizationError, 'used or canceled'):
            self.token.transfer_with_authorization(authorization, signature)
        self.assertEqual(self.token.balance_of(AUTHOR), 400_000)

    def test_transfer_with_authorization_window(self):
        authorization, signature = self._signed(valid_after=NOW - 600, valid_before=NOW)
        with self.assertRaisesMessage(AuthorizationError, 'expired'):
            self.token.transfer_with_authorization(authorization, signature)

        authorization, signature = self._signed(valid_after=NOW, valid_before=NOW + 600)
        with self.assertRaisesMessage(AuthorizationError, 'not yet valid'):
            self.token.transfer_with_authorization(authorization, signature)

    def test_transfer_with_bad_signature(self):
        authorization, _ = self._signed()
        _, other_signature = self._signed(value=1)

        with self.assertRaisesMessage(AuthorizationError, 'invalid signature'):
            self.token.transfer_with_authorization(authorization, other_signature)
        self.assertFalse(self.token.authorization_state(self.payer.address, authorization.nonce))

    def test_overdraft_rolls_back_nonce(self):
        authorization, signature = self._signed(value=2_000_000)

        with self.assertRaises(InsufficientFunds):
            self.token.transfer_with_authorization(authorization, signature)
        self.assertFalse(self.token.authorization_state(self.payer.address, authorization.nonce))

    def test_finite_allowance_is_spent(self):
        self.token.approve(self.payer.address, STRANGER, 300_000)

        self.token.transfer_from(STRANGER, self.payer.address, AUTHOR, 100_000)

        self.assertEqual(self.token.allowance(self.payer.address, STRANGER), 200_000)
        with self.assertRaises(InsufficientFunds):
            self.token.transfer_from(STRANGER, self.payer.address, AUTHOR, 200_001)


class LedgerChainClientTests(VaultLedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.chain = LedgerChainClient(chain_config(), ledger=self.ledger, clock=self.clock)

    def test_reverted_call_still_has_a_receipt(self):
        tx_hash = self.chain.settle_payment(VAULT, AUTHOR, 1_000)

        receipt = self.chain.wait_for_receipt(tx_hash)
        self.assertFalse(receipt.succeeded)
        record = LedgerTransaction.objects.get(tx_hash=tx_hash)
        self.assertIn('missing role FACILITATOR_ROLE', record.revert_reason)

    def test_settlement_to_unknown_vault_reverts(self):
        self.ledger.grant_role(ADMIN, 'facilitator', self.chain.operator_address)

        tx_hash = self.chain.settle_payment(STRANGER, AUTHOR, 1_000)

        self.assertEqual(self.chain.wait_for_receipt(tx_hash).status, 0)

    def test_unknown_transaction(self):
        with self.assertRaises(ChainError):
            self.chain.wait_for_receipt('0x' + '00' * 32)

    def test_approve_from_operator(self):
        tx_hash = self.chain.approve(VAULT, 123)

        self.assertTrue(self.chain.wait_for_receipt(tx_hash).succeeded)
        self.assertEqual(self.chain.allowance(self.chain.operator_address, VAULT), 123)


class AuthorProfileViewTests(VaultLedgerTestCase):
    def test_profile_lookup(self):
        self.ledger.set_author_tier(ADMIN, AUTHOR, Tier.TIER1)
        self.ledger.settle_payment(FACILITATOR, AUTHOR, 1_000_000_000)

        response = self.client.get(reverse('vault:author', kwargs={'address': AUTHOR}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'recipient': AUTHOR,
            'tier': 'TIER1',
            'availableBalance': '495000000',
            'lockedBalance': '495000000',
            'unlockTime': NOW + 7 * ONE_DAY_SECONDS,
        })

    def test_unknown_author_has_empty_profile(self):
        response = self.client.get(reverse('vault:author', kwargs={'address': STRANGER}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['lockedBalance'], '0')

    def test_invalid_address(self):
        response = self.client.get(reverse('vault:author', kwargs={'address': 'bob'}))

        self.assertEqual(response.status_code, 400)

    def test_vault_state(self):
        response = self.client.get(reverse('vault:state'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['protocolFeeBps'], 100)

    @override_settings(VAULT_ADDRESS='0x000000000000000000000000000000000000b0b0')
    def test_vault_state_not_deployed(self):
        response = self.client.get(reverse('vault:state'))

        self.assertEqual(response.status_code, 404)


class DeployVaultCommandTests(TestCase):
    def test_deploys_and_funds(self):
        out = StringIO()

        call_command('deploy_vault', '--fund', STRANGER, '5000', stdout=out)

        state = VaultState.objects.get()
        self.assertEqual(state.address, VAULT)
        self.assertEqual(state.treasury, TREASURY)
        ledger = VaultLedger(build_token(chain_config()), VAULT)
        self.assertTrue(ledger.has_role(ADMIN, 'admin'))
        self.assertTrue(ledger.has_role(chain_config()['signer_address'], 'facilitator'))
        self.assertEqual(ledger.token.balance_of(STRANGER), 5000)
        self.assertIn('Vault deployed to', out.getvalue())

    @override_settings(VAULT_TREASURY_ADDRESS='')
    def test_requires_treasury(self):
        with self.assertRaises(CommandError):
            call_command('deploy_vault', stdout=StringIO())

    def test_invalid_fund_amount(self):
        with mock.patch('vault.management.commands.deploy_vault.deploy_ledger'):
            with self.assertRaises(CommandError):
                call_command('deploy_vault', '--fund', STRANGER, 'abc', stdout=StringIO())
