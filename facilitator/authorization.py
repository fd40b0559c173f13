"""
Pre-execution checks for a signed transfer authorization.

Local checks (validity window, signature) run before the chain reads
(balance, nonce state) so that structurally bad requests never cost an RPC
round trip.
"""
from __future__ import annotations

from loguru import logger

from facilitator.chain import ChainClient
from facilitator.signature import SignatureVerifier
from facilitator.types import Authorization, ErrorKind, PaymentError


class AuthorizationValidator:
    def __init__(self, chain: ChainClient, verifier: SignatureVerifier):
        self.chain = chain
        self.verifier = verifier

    def validate(self, authorization: Authorization, signature: str, now: int) -> str:
        """
        Run every pre-execution check in order.

        Returns:
            The recovered payer address

        Raises:
            PaymentError: On the first failed check
        """
        self.check_window(authorization, now)
        payer = self.check_signature(authorization, signature)
        self.check_balance(authorization)
        self.check_nonce(authorization)
        return payer

    def check_window(self, authorization: Authorization, now: int) -> None:
        valid_after = authorization.valid_after_int
        valid_before = authorization.valid_before_int
        if valid_after >= valid_before:
            raise PaymentError(
                ErrorKind.EXPIRED, 'Authorization window is empty.')
        if now < valid_after:
            raise PaymentError(
                ErrorKind.EXPIRED,
                f'Authorization not yet valid. Valid after: {valid_after}')
        if now > valid_before:
            raise PaymentError(
                ErrorKind.EXPIRED,
                f'Authorization expired. Valid before: {valid_before}')

    def check_signature(self, authorization: Authorization, signature: str) -> str:
        result = self.verifier.verify(authorization, signature)
        if not result.is_valid:
            raise PaymentError(
                ErrorKind.INVALID_SIGNATURE,
                result.invalid_reason or 'Invalid signature')
        return result.payer

    def check_balance(self, authorization: Authorization) -> None:
        required = authorization.value_int
        try:
            available = self.chain.balance_of(authorization.from_)
        except Exception as exc:
            logger.error('balance lookup failed for {}: {}', authorization.from_, exc)
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED, 'Unable to read payer balance.') from exc
        if available < required:
            raise PaymentError(
                ErrorKind.INSUFFICIENT_BALANCE,
                f'Insufficient USDC balance. Required: {required}, Available: {available}',
                required=str(required),
                available=str(available),
            )

    def check_nonce(self, authorization: Authorization) -> None:
        try:
            used = self.chain.authorization_state(
                authorization.from_, authorization.nonce)
        except Exception as exc:
            logger.error('authorization state lookup failed for nonce {}: {}',
                         authorization.nonce, exc)
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED,
                'Unable to read authorization state.') from exc
        if used:
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED, 'Authorization nonce already used')
