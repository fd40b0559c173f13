from __future__ import annotations

import re
from typing import Optional

from django.apps import apps
from django.db import IntegrityError
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from facilitator.services import Facilitator, X402FacilitatorError
from facilitator.stores import MerchantInfo
from facilitator.types import (
    ErrorKind,
    MerchantAuthorization,
    MerchantEntry,
    PaymentRequest,
    PolicyUpdate,
)


ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')

FAILURE_STATUS = {
    ErrorKind.POLICY_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.MALFORMED_REQUEST: status.HTTP_400_BAD_REQUEST,
}


def _invalid_address(label: str = 'user') -> Response:
    return Response(
        {'error': f'Invalid {label} address'},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _misconfigured() -> Response:
    return Response(
        {
            'success': False,
            'error': 'Facilitator misconfiguration.',
            'errorCode': ErrorKind.TRANSACTION_FAILED.value,
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _malformed(message: str) -> Response:
    return Response(
        {
            'success': False,
            'error': message,
            'errorCode': ErrorKind.MALFORMED_REQUEST.value,
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


class FacilitatorAPIView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    facilitator: Optional[Facilitator] = None

    def get_facilitator(self) -> Facilitator:
        facilitator = self.facilitator or apps.get_app_config('facilitator').facilitator
        if facilitator is None:
            raise X402FacilitatorError('Facilitator services are not configured.')
        return facilitator


class PayView(FacilitatorAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        try:
            payment_request = PaymentRequest.model_validate(request.data)
        except PydanticValidationError as exc:
            logger.debug('pydantic validation failed: {}', exc)
            return _malformed('Invalid payment request.')

        try:
            facilitator = self.get_facilitator()
            result = facilitator.process_payment(payment_request)
        except X402FacilitatorError as exc:
            logger.error('x402 facilitator misconfiguration: {}', exc)
            return _misconfigured()
        except Exception as exc:
            logger.exception('x402 payment processing error: {}', exc)
            return Response(
                {
                    'success': False,
                    'error': 'Internal error',
                    'errorCode': ErrorKind.TRANSACTION_FAILED.value,
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if result.success:
            return Response(result.to_response(), status=status.HTTP_200_OK)
        return Response(
            result.to_response(),
            status=FAILURE_STATUS.get(result.error_kind, status.HTTP_400_BAD_REQUEST),
        )


class PolicyView(FacilitatorAPIView):
    def get(self, request, address: str, *args, **kwargs) -> Response:
        if not ADDRESS_PATTERN.match(address):
            return _invalid_address()
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()
        now = facilitator.clock()
        policy = facilitator.policies.get_or_create(address, now)
        return Response(policy.to_dict(now), status=status.HTTP_200_OK)

    def post(self, request, address: str, *args, **kwargs) -> Response:
        if not ADDRESS_PATTERN.match(address):
            return _invalid_address()
        try:
            update = PolicyUpdate.model_validate(request.data)
        except PydanticValidationError as exc:
            logger.debug('pydantic validation failed: {}', exc)
            return _malformed('Invalid policy update.')
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()

        now = facilitator.clock()
        policy = facilitator.policies.update(
            address,
            now,
            max_transaction_amount=(
                int(update.max_transaction_amount)
                if update.max_transaction_amount is not None else None
            ),
            daily_spending_limit=(
                int(update.daily_spending_limit)
                if update.daily_spending_limit is not None else None
            ),
            auto_pay_enabled=update.auto_pay_enabled,
        )
        logger.info('policy updated for {}', address)
        return Response(
            {'success': True, 'policy': policy.to_dict(now)},
            status=status.HTTP_200_OK,
        )


class AuthorizeMerchantView(FacilitatorAPIView):
    def post(self, request, address: str, *args, **kwargs) -> Response:
        if not ADDRESS_PATTERN.match(address):
            return _invalid_address()
        try:
            body = MerchantAuthorization.model_validate(request.data)
        except PydanticValidationError as exc:
            logger.debug('pydantic validation failed: {}', exc)
            return _malformed('Invalid merchant authorization.')
        if not body.merchant_address and not body.domain:
            return _malformed('merchantAddress or domain is required.')
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()

        now = facilitator.clock()
        if body.merchant_address:
            facilitator.policies.authorize_merchant(address, body.merchant_address, now)
        if body.domain:
            facilitator.policies.authorize_domain(address, body.domain, now)
        policy = facilitator.policies.get_or_create(address, now)
        logger.info('merchant authorization updated for {}', address)
        return Response(
            {
                'success': True,
                'authorizedMerchants': sorted(policy.authorized_merchants),
                'authorizedDomains': sorted(policy.authorized_domains),
            },
            status=status.HTTP_200_OK,
        )


class MerchantListView(FacilitatorAPIView):
    def get(self, request, *args, **kwargs) -> Response:
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()
        merchants = [merchant.to_dict() for merchant in facilitator.merchants.all()]
        return Response({'merchants': merchants}, status=status.HTTP_200_OK)

    def post(self, request, *args, **kwargs) -> Response:
        try:
            entry = MerchantEntry.model_validate(request.data)
        except PydanticValidationError as exc:
            logger.debug('pydantic validation failed: {}', exc)
            return Response(
                {'error': 'Missing required fields: address, name, domain'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()

        if facilitator.merchants.is_whitelisted(entry.address):
            return Response(
                {'error': 'Merchant already whitelisted'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        merchant = MerchantInfo(
            address=entry.address,
            name=entry.name,
            domain=entry.domain,
            verified=entry.verified,
            category=entry.category,
            max_transaction_limit=(
                int(entry.max_transaction_limit) if entry.max_transaction_limit else None
            ),
        )
        try:
            facilitator.merchants.add(merchant)
        except IntegrityError:
            return Response(
                {'error': 'Merchant already whitelisted'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(
            {'success': True, 'merchant': merchant.to_dict()},
            status=status.HTTP_200_OK,
        )


class MerchantDetailView(FacilitatorAPIView):
    def get(self, request, address: str, *args, **kwargs) -> Response:
        if not ADDRESS_PATTERN.match(address):
            return _invalid_address('merchant')
        try:
            facilitator = self.get_facilitator()
        except X402FacilitatorError:
            return _misconfigured()
        merchant = facilitator.merchants.get(address)
        if merchant is None:
            return Response({'error': 'Merchant not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response({'merchant': merchant.to_dict()}, status=status.HTTP_200_OK)
