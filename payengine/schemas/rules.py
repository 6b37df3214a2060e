"""
PayEngine - Statutory Rule Schemas

The tax and contribution rule table is configuration, versioned per
fiscal period. Rates are percentages (Decimal("4.48") means 4.48%).
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ALLOWANCE_NAMES = ("transport", "housing", "representation")


class TaxBracketRule(BaseModel):
    """One marginal bracket. upper=None means unbounded."""
    model_config = ConfigDict(frozen=True)

    lower: Decimal = Field(..., ge=0)
    upper: Optional[Decimal] = None
    rate: Decimal = Field(..., ge=0, le=100)


class ContributionRule(BaseModel):
    """Social contribution levied on gross pay, optionally capped."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=50)
    rate: Decimal
    ceiling: Optional[Decimal] = None
    threshold: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="No contribution when gross pay is at or below this amount",
    )
    residual_of: Optional[str] = Field(
        default=None,
        description="Apply to gross pay above the base of this earlier rule",
    )
    side: Literal["employee", "employer"] = "employee"
    scheme: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Scheme shared by the employee and employer rules of one levy; "
                    "employees exempt from it pay neither. Defaults to the rule name",
    )
    optional: bool = Field(
        default=False,
        description="Opt-in cover, applied only to employees who elected it",
    )
    tax_deductible: bool = Field(
        default=True,
        description="Whether the employee amount reduces the taxable base",
    )

    @property
    def scheme_name(self) -> str:
        return self.scheme or self.name


class ProfessionalExpenseRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    rate: Decimal = Field(..., ge=0, le=100)
    monthly_ceiling: Optional[Decimal] = Field(default=None, ge=0)


class SeniorityStep(BaseModel):
    """Seniority bonus rate for completed years in [min_years, max_years)."""
    model_config = ConfigDict(frozen=True)

    min_years: int = Field(..., ge=0)
    max_years: Optional[int] = None
    rate: Decimal = Field(..., ge=0, le=100)


class AllowanceCeiling(BaseModel):
    """Cap on an allowance, as a share of base salary and/or an absolute amount."""
    model_config = ConfigDict(frozen=True)

    max_percentage: Optional[Decimal] = Field(default=None, ge=0)
    absolute_ceiling: Optional[Decimal] = Field(default=None, ge=0)


class RuleSet(BaseModel):
    """Complete statutory rule table for payslip computation."""
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    effective_from: date

    bracket_basis: Literal["monthly", "annual"] = "annual"
    brackets: List[TaxBracketRule] = Field(..., min_length=1)
    contributions: List[ContributionRule] = Field(default_factory=list)

    # Family deductions, monthly amounts applied before bracket lookup
    dependent_deduction: Decimal = Field(default=Decimal("0.00"), ge=0)
    spouse_deduction: Decimal = Field(default=Decimal("0.00"), ge=0)
    # Monthly credit against computed tax
    personal_relief: Decimal = Field(default=Decimal("0.00"), ge=0)
    # Days in a full month; tax is prorated for employees working fewer
    standard_working_days: int = Field(default=26, ge=1, le=31)

    professional_expenses: Optional[ProfessionalExpenseRule] = None
    housing_interest_cap_rate: Decimal = Field(default=Decimal("0.00"), ge=0, le=100)

    seniority_scale: List[SeniorityStep] = Field(default_factory=list)
    allowance_ceilings: Dict[str, AllowanceCeiling] = Field(default_factory=dict)

    @field_validator("allowance_ceilings")
    @classmethod
    def known_allowances(cls, v: Dict[str, AllowanceCeiling]) -> Dict[str, AllowanceCeiling]:
        unknown = set(v) - set(ALLOWANCE_NAMES)
        if unknown:
            raise ValueError(f"Unknown allowances: {', '.join(sorted(unknown))}")
        return v

    @field_validator("contributions")
    @classmethod
    def unique_contribution_names(cls, v: List[ContributionRule]) -> List[ContributionRule]:
        names = [rule.name for rule in v]
        if len(names) != len(set(names)):
            raise ValueError("Contribution rule names must be unique")
        return v

    @model_validator(mode="after")
    def contiguous_brackets(self) -> "RuleSet":
        # Imported here: the tax calculator module imports RuleSet
        from payengine.services.calculators.income_tax_service import TaxBracket, validate_brackets
        from payengine.utils.error_handling import ValidationException

        try:
            validate_brackets([TaxBracket(b.lower, b.upper, b.rate) for b in self.brackets])
        except ValidationException as e:
            raise ValueError(e.message)
        return self
