"""
Settlement Calculator
=====================

Pure, stateless computation of what a student owes for a session and what
the tutor receives after the platform fee:

    gross   = round_half_up(hourly_rate * duration_hours, 2)
    payout  = round_half_up(gross * (1 - platform_fee_rate), 2)
    fee     = gross - payout

The fee rate is read from settings on every call (never cached) so a rate
change can never leave stale figures behind. Identical inputs always give
identical outputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from tutorbook.core.config import settings
from tutorbook.core.exceptions import SettlementInvariantError

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Settlement:
    """Full breakdown of a session's money flow."""
    gross_amount: Decimal
    platform_fee_rate: Decimal
    platform_fee: Decimal
    payout_amount: Decimal


def round_money(value: Decimal) -> Decimal:
    """Round to two decimal places, half-up."""
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def current_fee_rate() -> Decimal:
    return Decimal(str(settings.platform_fee_rate))


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    # str() first so floats like 1.5 do not carry binary noise
    return value if isinstance(value, Decimal) else Decimal(str(value))


def gross_amount(
    hourly_rate: Decimal | int | float | str,
    duration_hours: Decimal | int | float | str,
) -> Decimal:
    """Amount the student owes the platform for one session."""
    rate = _as_decimal(hourly_rate)
    duration = _as_decimal(duration_hours)
    if rate <= 0:
        raise ValueError(f"hourly_rate must be positive, got {rate}")
    if duration <= 0:
        raise ValueError(f"duration_hours must be positive, got {duration}")
    return round_money(rate * duration)


def payout_amount(
    collection_amount: Decimal | int | float | str,
    fee_rate: Optional[Decimal] = None,
) -> Decimal:
    """Amount disbursed to the tutor from a confirmed collection."""
    amount = _as_decimal(collection_amount)
    rate = current_fee_rate() if fee_rate is None else _as_decimal(fee_rate)
    if amount <= 0:
        raise ValueError(f"collection_amount must be positive, got {amount}")
    if not (Decimal("0") <= rate < Decimal("1")):
        raise ValueError(f"platform fee rate must be in [0, 1), got {rate}")
    return round_money(amount * (Decimal("1") - rate))


def settle(
    collection_amount: Decimal | int | float | str,
    fee_rate: Optional[Decimal] = None,
) -> Settlement:
    """Split a collected amount into platform fee and tutor payout."""
    rate = current_fee_rate() if fee_rate is None else _as_decimal(fee_rate)
    gross = round_money(_as_decimal(collection_amount))
    payout = payout_amount(gross, rate)
    return Settlement(
        gross_amount=gross,
        platform_fee_rate=rate,
        platform_fee=gross - payout,
        payout_amount=payout,
    )


def verify_payout_amount(
    collection_amount: Decimal,
    payout: Decimal,
    fee_rate: Decimal,
) -> None:
    """Raise ``SettlementInvariantError`` if ``payout`` breaks the fee formula."""
    expected = payout_amount(collection_amount, fee_rate)
    if _as_decimal(payout) != expected:
        logger.critical(
            "Settlement invariant violated: collection=%s fee_rate=%s payout=%s expected=%s",
            collection_amount,
            fee_rate,
            payout,
            expected,
        )
        raise SettlementInvariantError(
            f"Payout {payout} does not match {collection_amount} x (1 - {fee_rate}) = {expected}."
        )


def verify_collection_amount(
    hourly_rate: Decimal,
    duration_hours: Decimal,
    amount: Decimal,
) -> None:
    """Raise ``SettlementInvariantError`` if a collection's amount is not rate x duration."""
    expected = gross_amount(hourly_rate, duration_hours)
    if _as_decimal(amount) != expected:
        logger.critical(
            "Collection invariant violated: rate=%s duration=%s amount=%s expected=%s",
            hourly_rate,
            duration_hours,
            amount,
            expected,
        )
        raise SettlementInvariantError(
            f"Collection amount {amount} does not match {hourly_rate} x {duration_hours} = {expected}."
        )
