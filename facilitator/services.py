"""
Facilitator service wiring.

``build_facilitator`` constructs every collaborator once at process start;
views receive the resulting ``Facilitator`` instead of reaching for module
level singletons.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from django.conf import settings
from loguru import logger

from facilitator.authorization import AuthorizationValidator
from facilitator.chain import ChainClient, ChainClientFactory, get_chain_id, get_usdc_address
from facilitator.clock import unix_now
from facilitator.executor import PaymentExecutor
from facilitator.policy import PolicyValidator
from facilitator.signature import SignatureVerifier, TypedDataDomain
from facilitator.stores import (
    DatabasePolicyStore,
    InMemoryPolicyStore,
    MerchantRegistry,
    PolicyDefaults,
    PolicyStore,
)
from facilitator.types import ErrorKind, PaymentRequest, PaymentResult


class X402FacilitatorError(Exception):
    """Raised when the facilitator is misconfigured."""


@dataclass
class Facilitator:
    chain: ChainClient
    policies: PolicyStore
    merchants: MerchantRegistry
    policy_validator: PolicyValidator
    executor: PaymentExecutor
    clock: Callable[[], int] = unix_now

    def process_payment(self, request: PaymentRequest) -> PaymentResult:
        """
        Policy check, then on-chain execution, then spend recording.

        The policy check and the spend record are two separate steps, so two
        concurrent requests from one address can both pass the daily limit
        before either records its spend.
        """
        now = self.clock()
        check = self.policy_validator.validate(request, now)
        if not check.allowed:
            logger.info('policy rejected payment from {}: {}',
                        request.user_address, check.reason)
            details = {}
            if check.max_allowed is not None:
                details['maxAllowed'] = str(check.max_allowed)
            if check.remaining_daily is not None:
                details['remainingDaily'] = str(check.remaining_daily)
            return PaymentResult.failed(ErrorKind.POLICY_VIOLATION, check.reason, **details)

        result = self.executor.execute(request)
        if result.success:
            self.policies.record_spend(
                request.user_address, request.authorization.value_int, self.clock())
        return result


def chain_config() -> dict:
    network = settings.X402_NETWORK
    try:
        chain_id = settings.X402_CHAIN_ID or get_chain_id(network)
    except ValueError as exc:
        raise X402FacilitatorError(str(exc)) from exc
    asset_address = settings.X402_USDC_CONTRACT or get_usdc_address(network)
    if not asset_address:
        raise X402FacilitatorError(f'X402_USDC_CONTRACT is required for network {network}')
    return {
        'network': network,
        'chain_id': chain_id,
        'rpc_url': settings.X402_RPC_URL,
        'signer_private_key': settings.X402_SIGNER_PRIVATE_KEY,
        'signer_address': settings.X402_SIGNER_ADDRESS,
        'asset_address': asset_address,
        'token_name': settings.X402_TOKEN_NAME,
        'token_version': settings.X402_TOKEN_VERSION,
        'gas_limit': settings.X402_GAS_LIMIT,
        'tx_timeout_seconds': settings.X402_TX_TIMEOUT_SECONDS,
        'max_fee_per_gas_wei': settings.X402_MAX_FEE_PER_GAS_WEI,
        'max_priority_fee_per_gas_wei': settings.X402_MAX_PRIORITY_FEE_PER_GAS_WEI,
    }


def build_policy_store() -> PolicyStore:
    defaults = PolicyDefaults(
        max_transaction_amount=settings.X402_DEFAULT_MAX_TRANSACTION_AMOUNT,
        daily_spending_limit=settings.X402_DEFAULT_DAILY_SPENDING_LIMIT,
        auto_pay_enabled=settings.X402_DEFAULT_AUTO_PAY,
    )
    if defaults.auto_pay_enabled:
        logger.warning(
            'X402_DEFAULT_AUTO_PAY is enabled: new users accept payments to ANY '
            'merchant until they opt out. Set X402_DEFAULT_AUTO_PAY=false in production.')
    backend = settings.X402_POLICY_STORE.lower()
    if backend == 'memory':
        return InMemoryPolicyStore(defaults)
    if backend == 'database':
        return DatabasePolicyStore(defaults)
    raise X402FacilitatorError(f'Unsupported policy store: {settings.X402_POLICY_STORE}')


def build_facilitator(
    chain: Optional[ChainClient] = None,
    policies: Optional[PolicyStore] = None,
    clock: Callable[[], int] = unix_now,
) -> Facilitator:
    config = chain_config()
    if chain is None:
        try:
            chain = ChainClientFactory.create(settings.X402_CHAIN_BACKEND, config)
        except (KeyError, ValueError) as exc:
            raise X402FacilitatorError(f'Chain client misconfigured: {exc}') from exc
    if policies is None:
        policies = build_policy_store()

    verifier = SignatureVerifier(TypedDataDomain(
        name=config['token_name'],
        version=config['token_version'],
        chain_id=chain.chain_id,
        verifying_contract=chain.asset_address,
    ))
    merchants = MerchantRegistry()
    executor = PaymentExecutor(
        chain=chain,
        validator=AuthorizationValidator(chain, verifier),
        vault_address=settings.X402_VAULT_ADDRESS,
        clock=clock,
    )
    logger.info('facilitator ready: network={} backend={} vault={}',
                chain.chain_name, settings.X402_CHAIN_BACKEND,
                settings.X402_VAULT_ADDRESS or '-')
    return Facilitator(
        chain=chain,
        policies=policies,
        merchants=merchants,
        policy_validator=PolicyValidator(policies, merchants),
        executor=executor,
        clock=clock,
    )
