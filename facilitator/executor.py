"""
Payment executor: drives one payment request through

    RECEIVED -> VALIDATED -> COLLECTED -> (APPROVED) -> SETTLED | FAILED

Steps run strictly in order and are never retried here; a blind retry could
resubmit an authorization whose nonce is already consumed. Every confirmed
step is checkpointed in ``PaymentAttempt`` so that a resubmitted request
resumes after the last confirmed transaction instead of starting over.
"""
from __future__ import annotations

from datetime import datetime, timezone as datetime_timezone
from typing import Callable, Optional

from django.db import IntegrityError, transaction
from loguru import logger

from facilitator.authorization import AuthorizationValidator
from facilitator.chain import MAX_UINT256, ChainClient, ChainError
from facilitator.clock import unix_now
from facilitator.models import PaymentAttempt
from facilitator.types import ErrorKind, PaymentError, PaymentRequest, PaymentResult


Status = PaymentAttempt.Status

# Latest instant a DateTimeField can hold; later uint256 bounds are clamped.
MAX_TIMESTAMP = 253402300799


def _utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(min(timestamp, MAX_TIMESTAMP), tz=datetime_timezone.utc)


class PaymentExecutor:
    def __init__(
        self,
        chain: ChainClient,
        validator: AuthorizationValidator,
        vault_address: Optional[str] = None,
        clock: Callable[[], int] = unix_now,
    ):
        self.chain = chain
        self.validator = validator
        self.vault_address = vault_address or None
        self.clock = clock

    def execute(self, request: PaymentRequest) -> PaymentResult:
        authorization = request.authorization
        logger.info(
            'payment received: from={} to={} amount={} nonce={}',
            authorization.from_, authorization.to, authorization.value, authorization.nonce)

        attempt = self._load_attempt(request)

        if attempt.status == Status.SETTLED:
            logger.info('replay of settled nonce {} rejected', attempt.nonce)
            return PaymentResult.failed(
                ErrorKind.TRANSACTION_FAILED,
                'Authorization nonce already used',
                attempt.settlement_tx_hash,
            )

        try:
            self._check_same_terms(attempt, request)

            if attempt.checkpoint in (Status.RECEIVED, Status.VALIDATED):
                self._validate(attempt, request)
                self._collect(attempt, request)
            else:
                logger.info('resuming payment {} from checkpoint {}',
                            attempt.nonce, attempt.checkpoint)

            if self._routes_through_vault(attempt):
                if attempt.checkpoint == Status.COLLECTED:
                    self._approve(attempt)
                self._settle(attempt)
            else:
                attempt.reach(Status.SETTLED, attempt.collection_tx_hash)
                attempt.save()
        except PaymentError as exc:
            return self._fail(attempt, exc)
        except Exception as exc:
            logger.error('payment {} failed with chain error: {}', attempt.nonce, exc)
            return self._fail(attempt, PaymentError(
                ErrorKind.TRANSACTION_FAILED,
                f'Transaction failed: {exc}',
                self._partial_hash(attempt),
            ))

        logger.info('payment {} settled in tx {}', attempt.nonce, attempt.settlement_tx_hash)
        return self._settled_result(attempt)

    @staticmethod
    def _terms(request: PaymentRequest) -> dict:
        authorization = request.authorization
        return {
            'pay_to': authorization.to.lower(),
            'recipient': (request.challenge.recipient or '').lower(),
            'value': authorization.value,
            'network': request.challenge.network,
            'valid_after': _utc(authorization.valid_after_int),
            'valid_before': _utc(authorization.valid_before_int),
            'signature': request.signed_payload.signature,
            'payment_request': request.model_dump(by_alias=True),
        }

    def _load_attempt(self, request: PaymentRequest) -> PaymentAttempt:
        payer = request.authorization.from_.lower()
        nonce = request.authorization.nonce.lower()
        defaults = self._terms(request)
        try:
            with transaction.atomic():
                attempt, _ = PaymentAttempt.objects.get_or_create(
                    payer=payer, nonce=nonce, defaults=defaults)
        except IntegrityError:
            attempt = PaymentAttempt.objects.get(payer=payer, nonce=nonce)
        return attempt

    def _check_same_terms(self, attempt: PaymentAttempt, request: PaymentRequest) -> None:
        if attempt.checkpoint in (Status.RECEIVED, Status.VALIDATED):
            return
        authorization = request.authorization
        same = (
            attempt.signature.lower() == request.signed_payload.signature.lower()
            and attempt.value == authorization.value
            and attempt.pay_to == authorization.to.lower()
            and attempt.recipient == (request.challenge.recipient or '').lower()
        )
        if not same:
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED,
                'Authorization nonce already processed with different terms.',
                self._partial_hash(attempt),
            )

    def _routes_through_vault(self, attempt: PaymentAttempt) -> bool:
        return bool(self.vault_address and attempt.recipient)

    def _validate(self, attempt: PaymentAttempt, request: PaymentRequest) -> None:
        self.validator.validate(
            request.authorization, request.signed_payload.signature, self.clock())
        # Rows may carry terms of an earlier request that failed validation.
        for name, value in self._terms(request).items():
            setattr(attempt, name, value)
        attempt.reach(Status.VALIDATED)
        attempt.save()
        logger.info('payment {} validated', attempt.nonce)

    def _collect(self, attempt: PaymentAttempt, request: PaymentRequest) -> None:
        tx_hash = self.chain.transfer_with_authorization(
            request.authorization, request.signed_payload.signature)
        logger.info('collection tx submitted for {}: {}', attempt.nonce, tx_hash)
        # Keep the hash even if the receipt never arrives.
        attempt.collection_tx_hash = tx_hash
        attempt.save(update_fields=['collection_tx_hash', 'updated_at'])
        self._confirm(tx_hash, 'Collection transaction reverted')
        attempt.reach(Status.COLLECTED, tx_hash)
        attempt.save()

    def _approve(self, attempt: PaymentAttempt) -> None:
        amount = int(attempt.value)
        operator = self.chain.operator_address
        current = self.chain.allowance(operator, self.vault_address)
        if current >= amount:
            logger.debug('vault allowance {} covers {}; skipping approve', current, amount)
            attempt.reach(Status.APPROVED)
            attempt.save()
            return
        tx_hash = self.chain.approve(self.vault_address, MAX_UINT256)
        logger.info('approve tx submitted for {}: {}', attempt.nonce, tx_hash)
        attempt.approval_tx_hash = tx_hash
        attempt.save(update_fields=['approval_tx_hash', 'updated_at'])
        self._confirm(tx_hash, 'Vault approval reverted', attempt.collection_tx_hash)
        attempt.reach(Status.APPROVED, tx_hash)
        attempt.save()

    def _settle(self, attempt: PaymentAttempt) -> None:
        tx_hash = self.chain.settle_payment(
            self.vault_address, attempt.recipient, int(attempt.value))
        logger.info('settlement tx submitted for {}: {}', attempt.nonce, tx_hash)
        attempt.settlement_tx_hash = tx_hash
        attempt.save(update_fields=['settlement_tx_hash', 'updated_at'])
        self._confirm(tx_hash, 'Vault settlement reverted', attempt.collection_tx_hash)
        attempt.reach(Status.SETTLED, tx_hash)
        attempt.save()

    def _confirm(self, tx_hash: str, revert_message: str, collection_tx_hash: str = None) -> None:
        try:
            receipt = self.chain.wait_for_receipt(tx_hash)
        except ChainError as exc:
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED, str(exc), tx_hash,
                **self._collection_detail(collection_tx_hash)) from exc
        if not receipt.succeeded:
            logger.error('{}: {}', revert_message, tx_hash)
            raise PaymentError(
                ErrorKind.TRANSACTION_FAILED, revert_message, tx_hash,
                **self._collection_detail(collection_tx_hash))
        logger.info('tx {} confirmed in block {}: {}',
                    tx_hash, receipt.block_number, self.chain.get_explorer_url(tx_hash))

    @staticmethod
    def _collection_detail(collection_tx_hash: Optional[str]) -> dict:
        if not collection_tx_hash:
            return {}
        return {'collectionTransaction': collection_tx_hash}

    @staticmethod
    def _partial_hash(attempt: PaymentAttempt) -> Optional[str]:
        return (attempt.settlement_tx_hash
                or attempt.approval_tx_hash
                or attempt.collection_tx_hash)

    def _fail(self, attempt: PaymentAttempt, exc: PaymentError) -> PaymentResult:
        attempt.mark_failed(exc.kind.value, exc.message)
        attempt.save()
        logger.info('payment {} failed at {}: {} ({})',
                    attempt.nonce, attempt.checkpoint, exc.message, exc.kind.value)
        return exc.to_result()

    def _settled_result(self, attempt: PaymentAttempt) -> PaymentResult:
        details = {
            'from': attempt.payer,
            'to': attempt.pay_to,
            'amount': attempt.value,
            'network': attempt.network,
        }
        if attempt.recipient and self.vault_address:
            details['recipient'] = attempt.recipient
            details['collectionTransaction'] = attempt.collection_tx_hash
        return PaymentResult.settled(attempt.settlement_tx_hash, **details)
