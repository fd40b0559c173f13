"""
Construction of the in-process ledger from Django settings.
"""
from typing import Any, Callable, Dict

from django.conf import settings

from facilitator.chain import get_chain_id
from facilitator.clock import unix_now
from facilitator.signature import SignatureVerifier, TypedDataDomain
from vault.ledger import VaultLedger
from vault.token import LedgerToken


def build_token(config: Dict[str, Any], clock: Callable[[], int] = unix_now) -> LedgerToken:
    chain_id = config.get('chain_id') or get_chain_id(config['network'])
    verifier = SignatureVerifier(TypedDataDomain(
        name=config['token_name'],
        version=config['token_version'],
        chain_id=int(chain_id),
        verifying_contract=config['asset_address'],
    ))
    return LedgerToken(config['asset_address'], verifier, clock)


def build_ledger(config: Dict[str, Any], clock: Callable[[], int] = unix_now) -> VaultLedger:
    return VaultLedger(build_token(config, clock), settings.VAULT_ADDRESS, clock)


def deploy_ledger(config: Dict[str, Any], clock: Callable[[], int] = unix_now) -> VaultLedger:
    """Deploy the settings-configured vault and grant the facilitator its role."""
    admin = settings.VAULT_ADMIN_ADDRESS or config['signer_address']
    ledger = VaultLedger.deploy(
        build_token(config, clock),
        settings.VAULT_ADDRESS,
        admin=admin,
        treasury=settings.VAULT_TREASURY_ADDRESS,
        protocol_fee_bps=settings.VAULT_PROTOCOL_FEE_BPS,
        clock=clock,
    )
    if config.get('signer_address'):
        ledger.grant_role(admin, 'facilitator', config['signer_address'])
    return ledger
