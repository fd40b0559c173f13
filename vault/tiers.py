"""
Fee and vesting arithmetic. All splits are integer basis points over
10_000 with floor division; rounding dust stays with the locked share.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Tuple


BPS_DENOMINATOR = 10_000
ONE_DAY_SECONDS = 24 * 60 * 60


class Tier(IntEnum):
    TIER0 = 0
    TIER1 = 1
    CERTIFIED = 2


@dataclass(frozen=True)
class TierRule:
    immediate_release_bps: int
    lock_duration_seconds: int


TIER_RULES: Dict[Tier, TierRule] = {
    Tier.TIER0: TierRule(immediate_release_bps=1000, lock_duration_seconds=15 * ONE_DAY_SECONDS),
    Tier.TIER1: TierRule(immediate_release_bps=5000, lock_duration_seconds=7 * ONE_DAY_SECONDS),
    Tier.CERTIFIED: TierRule(immediate_release_bps=9000, lock_duration_seconds=ONE_DAY_SECONDS),
}


def compute_fee(amount: int, fee_bps: int) -> Tuple[int, int]:
    """Return ``(fee, net_income)`` for a gross ``amount``."""
    if amount < 0:
        raise ValueError('amount must be non-negative')
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError(f'fee bps out of range: {fee_bps}')
    fee = amount * fee_bps // BPS_DENOMINATOR
    return fee, amount - fee


def split_income(net_income: int, rule: TierRule) -> Tuple[int, int]:
    """Return ``(to_release, to_lock)`` for ``net_income`` under ``rule``."""
    if net_income < 0:
        raise ValueError('net income must be non-negative')
    to_release = net_income * rule.immediate_release_bps // BPS_DENOMINATOR
    return to_release, net_income - to_release
