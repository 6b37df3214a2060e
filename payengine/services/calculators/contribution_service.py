"""
PayEngine - Social Contribution Calculator

Capped statutory contributions (social security, health insurance and
similar levies) computed from gross pay:

    base = min(gross_pay, ceiling)   (gross_pay when no ceiling)
    amount = round(base * rate / 100)

Rules apply independently to the same gross pay. A rule with residual_of
takes as its base the gross pay above the named earlier rule's base, and
is then capped by its own ceiling. Employer-side rules are computed the
same way but reported separately.

Applicability is per employee: rules whose scheme the employee is exempt
from are skipped on both sides, and optional rules apply only when the
employee elected them. Skipped rules still define a base for later
residual rules.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AbstractSet, Any, Dict, List, Sequence

from payengine.schemas.rules import ContributionRule
from payengine.utils.error_handling import InvalidAmountException, ValidationException
from payengine.utils.money import ZERO, percent_of, round_money, sum_money, to_decimal


@dataclass
class ContributionLine:
    """One computed contribution."""
    name: str
    side: str
    base: Decimal
    rate: Decimal
    amount: Decimal
    tax_deductible: bool = True


@dataclass
class ContributionResult:
    """Employee and employer contributions for one gross pay figure."""
    employee: List[ContributionLine] = field(default_factory=list)
    employer: List[ContributionLine] = field(default_factory=list)

    @property
    def employee_total(self) -> Decimal:
        return sum_money(line.amount for line in self.employee)

    @property
    def employer_total(self) -> Decimal:
        return sum_money(line.amount for line in self.employer)

    @property
    def tax_deductible_total(self) -> Decimal:
        """Employee contributions that reduce the taxable base."""
        return sum_money(line.amount for line in self.employee if line.tax_deductible)

    def as_mapping(self) -> Dict[str, Decimal]:
        """Employee contributions keyed by rule name, in rule order."""
        return OrderedDict((line.name, line.amount) for line in self.employee)


class ContributionCalculator:
    """
    Computes capped contributions from an ordered rule list.
    """

    def __init__(self, rules: Sequence[ContributionRule]):
        self.rules = list(rules)
        self._validate_rules()

    def _validate_rules(self) -> None:
        seen = set()
        for rule in self.rules:
            if rule.rate is None or rule.rate <= 0:
                raise ValidationException(
                    f"Contribution '{rule.name}' must have a positive rate",
                    field="rate",
                    details={"rule": rule.name, "rate": str(rule.rate)},
                )
            if rule.ceiling is not None and rule.ceiling < 0:
                raise ValidationException(
                    f"Contribution '{rule.name}' has a negative ceiling",
                    field="ceiling",
                    details={"rule": rule.name},
                )
            if rule.residual_of is not None and rule.residual_of not in seen:
                raise ValidationException(
                    f"Contribution '{rule.name}' refers to '{rule.residual_of}', "
                    "which is not an earlier rule",
                    field="residual_of",
                    details={"rule": rule.name, "residual_of": rule.residual_of},
                )
            seen.add(rule.name)

    def applies_to(
        self,
        rule: ContributionRule,
        exemptions: AbstractSet[str] = frozenset(),
        elected: AbstractSet[str] = frozenset(),
    ) -> bool:
        if rule.scheme_name in exemptions:
            return False
        return not rule.optional or rule.name in elected

    def compute_detailed(
        self,
        gross_pay: Any,
        exemptions: AbstractSet[str] = frozenset(),
        elected: AbstractSet[str] = frozenset(),
    ) -> ContributionResult:
        """
        Compute every applicable rule against the gross pay.

        Args:
            gross_pay: Monthly gross pay
            exemptions: Schemes the employee is not subject to
            elected: Optional rules the employee opted into
        """
        gross_pay = to_decimal(gross_pay)
        if gross_pay < 0:
            raise InvalidAmountException(gross_pay, field="gross_pay",
                                         message="Gross pay cannot be negative")

        result = ContributionResult()
        bases: Dict[str, Decimal] = {}

        for rule in self.rules:
            if rule.residual_of is not None:
                base = max(ZERO, gross_pay - bases[rule.residual_of])
            else:
                base = gross_pay
            if rule.ceiling is not None:
                base = min(base, rule.ceiling)
            bases[rule.name] = base
            if not self.applies_to(rule, exemptions, elected):
                continue

            if rule.threshold is not None and gross_pay <= rule.threshold:
                amount = ZERO
            else:
                amount = percent_of(base, rule.rate)

            line = ContributionLine(
                name=rule.name,
                side=rule.side,
                base=round_money(base),
                rate=rule.rate,
                amount=amount,
                tax_deductible=rule.tax_deductible,
            )
            if rule.side == "employer":
                result.employer.append(line)
            else:
                result.employee.append(line)

        return result

    def compute(
        self,
        gross_pay: Any,
        exemptions: AbstractSet[str] = frozenset(),
        elected: AbstractSet[str] = frozenset(),
    ) -> Dict[str, Decimal]:
        """Employee contributions by name."""
        return self.compute_detailed(gross_pay, exemptions, elected).as_mapping()
