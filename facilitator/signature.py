"""
EIP-712 verification of EIP-3009 ``TransferWithAuthorization`` signatures.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3

from facilitator.types import Authorization


TRANSFER_WITH_AUTHORIZATION_TYPES = [
    {'name': 'from', 'type': 'address'},
    {'name': 'to', 'type': 'address'},
    {'name': 'value', 'type': 'uint256'},
    {'name': 'validAfter', 'type': 'uint256'},
    {'name': 'validBefore', 'type': 'uint256'},
    {'name': 'nonce', 'type': 'bytes32'},
]

EIP712_DOMAIN_TYPES = [
    {'name': 'name', 'type': 'string'},
    {'name': 'version', 'type': 'string'},
    {'name': 'chainId', 'type': 'uint256'},
    {'name': 'verifyingContract', 'type': 'address'},
]


@dataclass(frozen=True)
class TypedDataDomain:
    name: str
    version: str
    chain_id: int
    verifying_contract: str


@dataclass(frozen=True)
class VerificationResult:
    """Result of signature verification."""
    is_valid: bool
    payer: Optional[str] = None
    invalid_reason: Optional[str] = None


def build_typed_data(domain: TypedDataDomain, authorization: Authorization) -> dict:
    return {
        'types': {
            'EIP712Domain': EIP712_DOMAIN_TYPES,
            'TransferWithAuthorization': TRANSFER_WITH_AUTHORIZATION_TYPES,
        },
        'primaryType': 'TransferWithAuthorization',
        'domain': {
            'name': domain.name,
            'version': domain.version,
            'chainId': int(domain.chain_id),
            'verifyingContract': Web3.to_checksum_address(domain.verifying_contract),
        },
        'message': {
            'from': Web3.to_checksum_address(authorization.from_),
            'to': Web3.to_checksum_address(authorization.to),
            'value': authorization.value_int,
            'validAfter': authorization.valid_after_int,
            'validBefore': authorization.valid_before_int,
            'nonce': HexBytes(authorization.nonce),
        },
    }


class SignatureVerifier:
    """
    Recovers the signer of a transfer authorization and compares it to the
    claimed payer. Every failure mode returns an invalid result.
    """

    def __init__(self, domain: TypedDataDomain):
        self.domain = domain

    def recover(self, authorization: Authorization, signature: str) -> str:
        signable = encode_typed_data(
            full_message=build_typed_data(self.domain, authorization))
        return Web3.to_checksum_address(
            Account.recover_message(signable, signature=signature))

    def verify(self, authorization: Authorization, signature: str) -> VerificationResult:
        if not signature:
            return VerificationResult(
                is_valid=False, invalid_reason='Authorization signature missing.')
        try:
            recovered = self.recover(authorization, signature)
        except Exception as exc:  # eth_account raises many exception types on bad input
            logger.debug('signature recovery failed: {}', exc)
            return VerificationResult(
                is_valid=False,
                invalid_reason='Unable to recover signer from signature.',
            )

        if recovered.lower() != authorization.from_.lower():
            return VerificationResult(
                is_valid=False,
                payer=recovered,
                invalid_reason=(
                    f'Signature mismatch: expected {authorization.from_}, got {recovered}'
                ),
            )
        return VerificationResult(is_valid=True, payer=recovered)
