"""
Wire types for the facilitator API.

Amounts travel as decimal strings in base units so that no JSON consumer
loses precision; the ``*_int`` accessors are what the services compute with.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from hexbytes import HexBytes
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from web3 import Web3


MAX_UINT256 = 2 ** 256 - 1


class ErrorKind(str, Enum):
    INVALID_SIGNATURE = 'INVALID_SIGNATURE'
    EXPIRED = 'EXPIRED'
    INSUFFICIENT_BALANCE = 'INSUFFICIENT_BALANCE'
    POLICY_VIOLATION = 'POLICY_VIOLATION'
    TRANSACTION_FAILED = 'TRANSACTION_FAILED'
    MALFORMED_REQUEST = 'MALFORMED_REQUEST'


def _check_address(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f'Invalid ethereum address: {value}')
    return value


def _check_base_units(value: Any) -> str:
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f'Amount must be a non-negative integer string: {value}')
    if int(text) > MAX_UINT256:
        raise ValueError(f'Amount exceeds uint256: {value}')
    return text


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Authorization(_WireModel):
    """EIP-3009 transfer authorization as signed by the payer."""

    from_: str = Field(alias='from')
    to: str
    value: str
    valid_after: str = Field(alias='validAfter')
    valid_before: str = Field(alias='validBefore')
    nonce: str

    check_addresses = field_validator('from_', 'to')(_check_address)
    check_amounts = field_validator('value', 'valid_after', 'valid_before', mode='before')(
        _check_base_units)

    @field_validator('nonce')
    @classmethod
    def check_nonce(cls, value: str) -> str:
        if not value.startswith('0x') or len(value) != 66:
            raise ValueError('Authorization nonce must be a 32-byte hex string.')
        int(value, 16)
        return value

    @property
    def value_int(self) -> int:
        return int(self.value)

    @property
    def valid_after_int(self) -> int:
        return int(self.valid_after)

    @property
    def valid_before_int(self) -> int:
        return int(self.valid_before)


class SignedPayload(_WireModel):
    signature: str
    authorization: Authorization

    @field_validator('signature')
    @classmethod
    def check_signature(cls, value: str) -> str:
        try:
            signature_bytes = HexBytes(value)
        except (ValueError, TypeError) as exc:
            raise ValueError('Authorization signature must be hex encoded.') from exc
        if len(signature_bytes) != 65:
            raise ValueError('Authorization signature must be 65 bytes.')
        return value


class PaymentChallenge(_WireModel):
    """The 402 challenge a merchant issued, as relayed by the payer's agent."""

    scheme: str = 'exact'
    network: str = Field(max_length=32)
    amount: str
    asset: str
    merchant_address: str = Field(
        validation_alias=AliasChoices('merchantAddress', 'payTo', 'merchant_address'),
        serialization_alias='merchantAddress',
    )
    merchant_domain: Optional[str] = Field(default=None, alias='merchantDomain')
    # Vault beneficiary (the author); settlement goes through the vault when set.
    recipient: Optional[str] = None
    resource: str = ''
    description: str = ''

    check_addresses = field_validator('merchant_address', 'asset')(_check_address)
    check_amount = field_validator('amount', mode='before')(_check_base_units)

    @field_validator('scheme')
    @classmethod
    def check_scheme(cls, value: str) -> str:
        if value != 'exact':
            raise ValueError(f'Unsupported scheme: {value}')
        return value

    @field_validator('recipient')
    @classmethod
    def check_recipient(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_address(value)

    @property
    def amount_int(self) -> int:
        return int(self.amount)


class PaymentRequest(_WireModel):
    user_address: str = Field(alias='userAddress')
    challenge: PaymentChallenge
    signed_payload: SignedPayload = Field(alias='signedPayload')

    check_address = field_validator('user_address')(_check_address)

    @property
    def authorization(self) -> Authorization:
        return self.signed_payload.authorization


class PolicyUpdate(_WireModel):
    max_transaction_amount: Optional[str] = Field(default=None, alias='maxTransactionAmount')
    daily_spending_limit: Optional[str] = Field(default=None, alias='dailySpendingLimit')
    auto_pay_enabled: Optional[bool] = Field(default=None, alias='autoPayEnabled')

    @field_validator('max_transaction_amount', 'daily_spending_limit', mode='before')
    @classmethod
    def check_amounts(cls, value: Any) -> Optional[str]:
        if value is None:
            return value
        return _check_base_units(value)


class MerchantAuthorization(_WireModel):
    merchant_address: Optional[str] = Field(default=None, alias='merchantAddress')
    domain: Optional[str] = None

    @field_validator('merchant_address')
    @classmethod
    def check_merchant(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_address(value)


class MerchantEntry(_WireModel):
    address: str
    name: str
    domain: str
    verified: bool = False
    category: str = ''
    max_transaction_limit: Optional[str] = Field(default=None, alias='maxTransactionLimit')

    check_address = field_validator('address')(_check_address)


@dataclass
class PolicyCheckResult:
    allowed: bool
    reason: Optional[str] = None
    remaining_daily: Optional[int] = None
    max_allowed: Optional[int] = None


@dataclass
class PaymentResult:
    """Outcome of a payment request; failures may carry a partial tx hash."""

    success: bool
    transaction_hash: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def settled(cls, transaction_hash: str, **details: Any) -> 'PaymentResult':
        return cls(success=True, transaction_hash=transaction_hash, details=details)

    @classmethod
    def failed(
        cls,
        kind: ErrorKind,
        error: str,
        transaction_hash: Optional[str] = None,
        **details: Any,
    ) -> 'PaymentResult':
        return cls(
            success=False,
            transaction_hash=transaction_hash,
            error=error,
            error_kind=kind,
            details=details,
        )

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'success': self.success,
            'transactionHash': self.transaction_hash,
        }
        if self.success:
            body['details'] = self.details
        else:
            body['error'] = self.error
            body['errorCode'] = self.error_kind.value if self.error_kind else None
            if self.details:
                body['details'] = self.details
        return body


class PaymentError(Exception):
    """Raised inside the payment pipeline; converted to a PaymentResult."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        transaction_hash: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.transaction_hash = transaction_hash
        self.details = details

    def to_result(self) -> PaymentResult:
        return PaymentResult.failed(
            self.kind, self.message, self.transaction_hash, **self.details)
