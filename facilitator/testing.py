"""
Helpers shared by the test modules: payer signing and request bodies.
"""
import os
from typing import Optional, Tuple

from eth_account.messages import encode_typed_data
from web3 import Web3

from facilitator.signature import TypedDataDomain, build_typed_data
from facilitator.types import Authorization


USDC_CONTRACT = '0x5425890298aed601595a70AB815c96711a31Bc65'
FUJI_DOMAIN = TypedDataDomain(
    name='USD Coin',
    version='2',
    chain_id=43113,
    verifying_contract=USDC_CONTRACT,
)


def random_nonce() -> str:
    return '0x' + os.urandom(32).hex()


def sign_authorization(
    account,
    to: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: Optional[str] = None,
    domain: TypedDataDomain = FUJI_DOMAIN,
) -> Tuple[Authorization, str]:
    authorization = Authorization.model_validate({
        'from': account.address,
        'to': to,
        'value': str(value),
        'validAfter': str(valid_after),
        'validBefore': str(valid_before),
        'nonce': nonce or random_nonce(),
    })
    signable = encode_typed_data(full_message=build_typed_data(domain, authorization))
    signature = Web3.to_hex(account.sign_message(signable).signature)
    return authorization, signature


def payment_body(
    account,
    merchant: str,
    amount: int,
    now: int,
    recipient: Optional[str] = None,
    nonce: Optional[str] = None,
    to: Optional[str] = None,
    value: Optional[int] = None,
    valid_after: Optional[int] = None,
    valid_before: Optional[int] = None,
    domain: TypedDataDomain = FUJI_DOMAIN,
) -> dict:
    """JSON body of ``POST /api/pay`` as a payer's agent would send it."""
    authorization, signature = sign_authorization(
        account,
        to=to or merchant,
        value=amount if value is None else value,
        valid_after=now - 60 if valid_after is None else valid_after,
        valid_before=now + 600 if valid_before is None else valid_before,
        nonce=nonce,
        domain=domain,
    )
    challenge = {
        'scheme': 'exact',
        'network': 'avalanche-fuji',
        'amount': str(amount),
        'asset': domain.verifying_contract,
        'merchantAddress': merchant,
        'resource': '/buy/article-1',
        'description': 'Article access',
    }
    if recipient:
        challenge['recipient'] = recipient
    return {
        'userAddress': account.address,
        'challenge': challenge,
        'signedPayload': {
            'signature': signature,
            'authorization': authorization.model_dump(by_alias=True),
        },
    }
