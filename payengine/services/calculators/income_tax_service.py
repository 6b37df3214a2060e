"""
PayEngine - Progressive Income Tax Calculator

Marginal bracket income tax on the monthly taxable base.

Brackets are read from the period's rule set and may be expressed per
month or per year. When they are annual, the monthly base is annualized
before the bracket walk and the tax is brought back to a monthly figure,
both inside compute_detailed() only.

Bracket edges are inclusive on the lower bound and exclusive on the upper
bound; the last bracket is unbounded.

For a partial month the bracket tax is prorated by the share of working
days before relief is applied.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from payengine.schemas.rules import RuleSet
from payengine.utils.error_handling import InvalidAmountException, ValidationException
from payengine.utils.money import ZERO, round_money, to_decimal

PERIODS_PER_YEAR = Decimal("12")


@dataclass(frozen=True)
class TaxBracket:
    """Tax bracket definition. Rate is a percentage."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def calculate_tax(self, taxable_income: Decimal) -> Decimal:
        """Calculate unrounded tax for the slice of income inside this bracket."""
        if taxable_income <= self.lower:
            return Decimal("0")

        if self.upper is None:
            taxable_in_band = taxable_income - self.lower
        else:
            taxable_in_band = min(taxable_income, self.upper) - self.lower

        if taxable_in_band <= 0:
            return Decimal("0")

        return taxable_in_band * (self.rate / 100)


def validate_brackets(brackets: Sequence[TaxBracket]) -> None:
    """
    Check that brackets are contiguous and strictly increasing, and that
    the final one is unbounded.
    """
    if not brackets:
        raise ValidationException("At least one tax bracket is required", field="brackets")

    for index, bracket in enumerate(brackets):
        is_last = index == len(brackets) - 1
        if bracket.rate < 0:
            raise ValidationException(
                f"Bracket {index + 1} has a negative rate",
                field="brackets",
                details={"bracket": index + 1, "rate": str(bracket.rate)},
            )
        if bracket.lower < 0:
            raise ValidationException(
                f"Bracket {index + 1} has a negative lower bound",
                field="brackets",
                details={"bracket": index + 1},
            )
        if bracket.upper is None and not is_last:
            raise ValidationException(
                "Only the last tax bracket may be unbounded",
                field="brackets",
                details={"bracket": index + 1},
            )
        if is_last and bracket.upper is not None:
            raise ValidationException(
                "The last tax bracket must have an unbounded upper edge",
                field="brackets",
            )
        if bracket.upper is not None and bracket.upper <= bracket.lower:
            raise ValidationException(
                f"Bracket {index + 1} upper bound must exceed its lower bound",
                field="brackets",
                details={"bracket": index + 1},
            )
        if index > 0 and bracket.lower != brackets[index - 1].upper:
            raise ValidationException(
                f"Bracket {index + 1} does not start where bracket {index} ends",
                field="brackets",
                details={
                    "bracket": index + 1,
                    "lower": str(bracket.lower),
                    "previous_upper": str(brackets[index - 1].upper),
                },
            )


@dataclass
class TaxComputation:
    """Detailed result of one period's income tax computation."""
    taxable_base: Decimal
    total_deductions: Decimal
    net_taxable: Decimal
    tax_before_relief: Decimal
    relief: Decimal
    tax_due: Decimal
    proration: Decimal = Decimal("1")
    band_breakdown: List[Dict[str, Any]] = field(default_factory=list)


class ProgressiveTaxCalculator:
    """
    Progressive marginal-rate income tax calculator.

    The calculator carries no jurisdiction numbers of its own; brackets
    come from the rule set in force for the period.
    """

    def __init__(self, brackets: Sequence[TaxBracket], basis: str = "annual"):
        if basis not in ("monthly", "annual"):
            raise ValidationException(f"Unknown bracket basis: {basis}", field="bracket_basis")
        validate_brackets(brackets)
        self.brackets = list(brackets)
        self.basis = basis

    @classmethod
    def from_rule_set(cls, rule_set: RuleSet) -> "ProgressiveTaxCalculator":
        return cls(
            [TaxBracket(b.lower, b.upper, b.rate) for b in rule_set.brackets],
            basis=rule_set.bracket_basis,
        )

    def calculate_bracket_tax(self, income: Decimal) -> Tuple[Decimal, List[Dict[str, Any]]]:
        """
        Walk the bracket table for an income already on the brackets' basis.

        Returns:
            Tuple of (unrounded total tax, band_breakdown)
        """
        income = to_decimal(income)
        total_tax = Decimal("0")
        band_breakdown = []

        for bracket in self.brackets:
            if income <= bracket.lower:
                break
            band_tax = bracket.calculate_tax(income)
            upper = income if bracket.upper is None else min(income, bracket.upper)
            total_tax += band_tax
            band_breakdown.append({
                "lower": bracket.lower,
                "upper": bracket.upper,
                "rate": bracket.rate,
                "taxable_in_band": upper - bracket.lower,
                "tax": round_money(band_tax),
            })

        return total_tax, band_breakdown

    def compute_detailed(
        self,
        taxable_base: Any,
        deductions: Any = ZERO,
        relief: Any = ZERO,
        proration: Any = Decimal("1"),
    ) -> TaxComputation:
        """
        Compute one month's tax.

        Args:
            taxable_base: Monthly gross pay less employee contributions
            deductions: Monthly family and other deductions applied before bracket lookup
            relief: Monthly credit subtracted from the computed tax
            proration: Share of the month worked, between 0 and 1
        """
        taxable_base = to_decimal(taxable_base)
        deductions = to_decimal(deductions)
        relief = to_decimal(relief)
        proration = to_decimal(proration)

        if taxable_base < 0:
            raise InvalidAmountException(taxable_base, field="taxable_base",
                                         message="Taxable base cannot be negative")
        if deductions < 0:
            raise InvalidAmountException(deductions, field="deductions",
                                         message="Tax deductions cannot be negative")
        if relief < 0:
            raise InvalidAmountException(relief, field="relief",
                                         message="Tax relief cannot be negative")
        if not 0 <= proration <= 1:
            raise ValidationException(
                "Tax proration must be between 0 and 1",
                field="proration",
                details={"proration": str(proration)},
            )

        net_taxable = max(ZERO, taxable_base - deductions)

        if self.basis == "annual":
            annual_tax, band_breakdown = self.calculate_bracket_tax(net_taxable * PERIODS_PER_YEAR)
            period_tax = annual_tax / PERIODS_PER_YEAR
        else:
            period_tax, band_breakdown = self.calculate_bracket_tax(net_taxable)

        tax_before_relief = round_money(period_tax * proration)
        applied_relief = min(round_money(relief), tax_before_relief)

        return TaxComputation(
            taxable_base=round_money(taxable_base),
            total_deductions=round_money(taxable_base - net_taxable),
            net_taxable=round_money(net_taxable),
            tax_before_relief=tax_before_relief,
            relief=applied_relief,
            tax_due=tax_before_relief - applied_relief,
            proration=proration,
            band_breakdown=band_breakdown,
        )

    def compute(self, taxable_base: Any, deductions: Any = ZERO) -> Decimal:
        """Tax due for the month, without personal relief."""
        return self.compute_detailed(taxable_base, deductions).tax_due
