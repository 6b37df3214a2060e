"""
PayEngine - Variable Element Aggregator

Folds one employee's monthly variable entries into a gross adjustment and
a set of pre-net deductions.

Sign by type:
- OVERTIME, BONUS, LEAVE: added to gross
- ABSENCE, LATE: subtracted from gross
- ADVANCE: deducted after tax, never part of gross
- OTHER: signed by its own amount
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable

from payengine.models.payroll import VariableElementType
from payengine.utils.error_handling import ValidationException
from payengine.utils.money import ZERO, round_money, to_decimal

ADDITIVE_TYPES = {
    VariableElementType.OVERTIME,
    VariableElementType.BONUS,
    VariableElementType.LEAVE,
}
SUBTRACTIVE_TYPES = {
    VariableElementType.ABSENCE,
    VariableElementType.LATE,
}


@dataclass
class AggregatedElements:
    """Net effect of a month's variable elements."""
    gross_adjustment: Decimal = ZERO
    pre_net_deductions: Decimal = ZERO
    breakdown: Dict[str, Decimal] = field(default_factory=OrderedDict)


class VariableElementAggregator:
    """Aggregates variable pay elements for one employee and period."""

    @staticmethod
    def element_amount(element) -> Decimal:
        """
        Amount of one element before its sign is applied.

        Overtime entries with hours are always recomputed as hours x rate.
        """
        element_type = VariableElementType(element.element_type)

        if element_type == VariableElementType.OVERTIME and element.hours is not None:
            if element.hourly_rate is None:
                raise ValidationException(
                    "Overtime hours recorded without an hourly rate",
                    field="hourly_rate",
                    details={"element_id": str(getattr(element, "id", ""))},
                )
            hours = to_decimal(element.hours)
            rate = to_decimal(element.hourly_rate)
            if hours < 0 or rate < 0:
                raise ValidationException(
                    "Overtime hours and hourly rate cannot be negative",
                    field="hours",
                    details={"element_id": str(getattr(element, "id", ""))},
                )
            return round_money(hours * rate)

        if element.amount is None:
            raise ValidationException(
                f"{element_type.name} element has no amount",
                field="amount",
                details={"element_id": str(getattr(element, "id", ""))},
            )

        amount = round_money(element.amount)
        if amount < 0 and element_type != VariableElementType.OTHER:
            raise ValidationException(
                f"{element_type.name} amount cannot be negative; the type carries the sign",
                field="amount",
                details={"element_id": str(getattr(element, "id", "")), "amount": str(amount)},
            )
        return amount

    def aggregate(self, elements: Iterable) -> AggregatedElements:
        result = AggregatedElements()

        for element in elements:
            element_type = VariableElementType(element.element_type)
            amount = self.element_amount(element)

            if element_type == VariableElementType.ADVANCE:
                result.pre_net_deductions += amount
                signed = -amount
            elif element_type in SUBTRACTIVE_TYPES:
                result.gross_adjustment -= amount
                signed = -amount
            elif element_type in ADDITIVE_TYPES or element_type == VariableElementType.OTHER:
                result.gross_adjustment += amount
                signed = amount
            else:
                raise ValidationException(f"Unsupported element type: {element_type}")

            key = element_type.value
            result.breakdown[key] = result.breakdown.get(key, ZERO) + signed

        return result
