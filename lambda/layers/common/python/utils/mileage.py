"""
Mileage Calculation
===================

Rate selection and money rounding for expense amounts.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from models import ChargerType, MileageRate, VehicleType

PENNY = Decimal("0.01")


def round_money(value: float) -> float:
    """Round to 2dp, halves away from zero."""
    return float(Decimal(str(value)).quantize(PENNY, rounding=ROUND_HALF_UP))


def net_cost(amount_before_vat: float, vat_amount: float) -> float:
    """Total cost of an expense including VAT."""
    return round_money((amount_before_vat or 0) + (vat_amount or 0))


def select_mileage_rate(
    rates: list[MileageRate],
    vehicle_type: VehicleType,
    charger_type: Optional[ChargerType],
    on: date
) -> Optional[MileageRate]:
    """
    Pick the rate that applies to a journey.

    Electric vehicles match on charger type (home or public);
    every other vehicle uses the rate with no charger type.
    """
    if vehicle_type == VehicleType.ELECTRIC:
        wanted_charger = charger_type or ChargerType.HOME
    else:
        wanted_charger = None

    for rate in rates:
        if rate.vehicle_type != vehicle_type or not rate.is_effective(on):
            continue
        if rate.charger_type == wanted_charger:
            return rate

    return None


def calculate_mileage_amount(distance_miles: float, rate: MileageRate) -> float:
    """Before-VAT amount for a journey."""
    return round_money(Decimal(str(distance_miles)) * Decimal(str(rate.rate_per_mile)))
