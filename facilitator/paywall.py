"""
Merchant-side x402 helpers: the 402 challenge body and the ``X-PAYMENT``
header codec.

Merchant servers import these to gate a resource and to turn the decoded
payment into the challenge relayed to ``POST /api/pay``; the facilitator
itself never calls them.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from x402.encoding import safe_base64_decode, safe_base64_encode
from x402.types import PaymentPayload, PaymentRequirements


X402_VERSION = 1
X_PAYMENT_HEADER = 'X-PAYMENT'
X_PAYMENT_RESPONSE_HEADER = 'X-PAYMENT-RESPONSE'
DEFAULT_PAYMENT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class PayloadCheck:
    valid: bool
    error: Optional[str] = None


def build_payment_required(
    resource: str,
    amount: str,
    description: str,
    pay_to: str,
    asset: str,
    network: str,
    extra: Optional[Dict[str, Any]] = None,
    timeout_seconds: int = DEFAULT_PAYMENT_TIMEOUT_SECONDS,
) -> Dict[str, Any]:
    """Body of an HTTP 402 response advertising a single ``exact`` payment."""
    requirements = PaymentRequirements(
        scheme='exact',
        network=network,
        max_amount_required=str(amount),
        resource=resource,
        description=description,
        mime_type='application/json',
        output_schema=None,
        pay_to=pay_to,
        max_timeout_seconds=timeout_seconds,
        asset=asset,
        extra=extra,
    )
    return {
        'x402Version': X402_VERSION,
        'accepts': [requirements.model_dump(by_alias=True, exclude_none=True)],
        'error': 'X-PAYMENT header is required',
    }


def decode_payment_header(header_value: str) -> Optional[PaymentPayload]:
    """Decode a base64 JSON ``X-PAYMENT`` header; None if it is unusable."""
    try:
        decoded = safe_base64_decode(header_value)
        return PaymentPayload.model_validate(json.loads(decoded))
    except (ValueError, TypeError, PydanticValidationError) as exc:
        logger.debug('invalid X-PAYMENT header: {}', exc)
        return None


def encode_payment_header(payload: PaymentPayload) -> str:
    return safe_base64_encode(
        json.dumps(payload.model_dump(by_alias=True)).encode('utf-8'))


def encode_payment_response(response: Dict[str, Any]) -> str:
    return safe_base64_encode(json.dumps(response).encode('utf-8'))


def validate_payment_payload(payload: PaymentPayload, pay_to: str, now: int) -> PayloadCheck:
    if payload.x402_version != X402_VERSION:
        return PayloadCheck(False, f'Unsupported x402 version: {payload.x402_version}')
    if payload.scheme != 'exact':
        return PayloadCheck(False, f'Unsupported scheme: {payload.scheme}')

    authorization = payload.payload.authorization
    for name in ('from_', 'to', 'value', 'valid_after', 'valid_before', 'nonce'):
        if not getattr(authorization, name, None):
            return PayloadCheck(False, f'Missing field: {name.rstrip("_")}')

    if authorization.to.lower() != pay_to.lower():
        return PayloadCheck(False, 'Recipient mismatch')
    if not payload.payload.signature:
        return PayloadCheck(False, 'Missing signature')

    if now < int(authorization.valid_after):
        return PayloadCheck(False, 'Not yet valid')
    if now > int(authorization.valid_before):
        return PayloadCheck(False, 'Expired')
    return PayloadCheck(True)


def validate_payment_amount(paid_amount: str, required_amount: str) -> PayloadCheck:
    if int(paid_amount) < int(required_amount):
        return PayloadCheck(False, f'Insufficient: {paid_amount} < {required_amount}')
    return PayloadCheck(True)
