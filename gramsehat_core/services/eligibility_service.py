# =============================================================================
# gramsehat_core/services/eligibility_service.py
# Scheme Eligibility Evaluation
# =============================================================================
"""
EligibilityEngine - evaluates a UserProfile against every HealthScheme in the
local store.

Every scheme is reported exactly once, in store insertion order. A scheme is
matched only when every defined criterion holds; unmatched schemes carry the
list of failed criteria so the caller can explain the outcome.

Composite ``additional_conditions`` values (lists, dicts) have no agreed
matching semantics. They are reported in ``flags`` and never evaluated.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Tuple

from gramsehat_core.models import (
    EligibilityCriteria,
    HealthScheme,
    IncomeCategory,
    UserProfile,
)
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.services.base_service import BaseService


# Annual household income ceiling (INR) represented by each income category
INCOME_CATEGORY_CEILINGS: Dict[IncomeCategory, float] = {
    IncomeCategory.BPL: 27_000,
    IncomeCategory.LOW: 100_000,
    IncomeCategory.MIDDLE: 500_000,
    IncomeCategory.HIGH: float("inf"),
}

_PROFILE_FIELDS = frozenset(f.name for f in fields(UserProfile))
_COMPOSITE_TYPES = (list, tuple, set, dict)


@dataclass
class EligibilityResult:
    """Outcome of evaluating one scheme."""
    scheme: HealthScheme
    matched: bool
    reasons: List[str] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)


def _scalar(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def evaluate_criteria(
    criteria: EligibilityCriteria,
    profile: UserProfile,
) -> Tuple[List[str], List[str]]:
    """
    Check one criteria set against a profile.

    Returns:
        (reasons, flags): reasons lists every failed criterion (empty means
        matched); flags lists conditions that were not evaluated.
    """
    reasons: List[str] = []
    flags: List[str] = []

    # Age bounds; a missing bound is open on that side
    if criteria.min_age is not None and profile.age < criteria.min_age:
        reasons.append(f"age {profile.age} below minimum age {criteria.min_age}")
    if criteria.max_age is not None and profile.age > criteria.max_age:
        reasons.append(f"age {profile.age} exceeds maximum age {criteria.max_age}")

    if criteria.gender:
        if not profile.gender or profile.gender.strip().lower() != criteria.gender.strip().lower():
            reasons.append(f"scheme is for gender '{criteria.gender}'")

    if criteria.max_income is not None:
        ceiling = INCOME_CATEGORY_CEILINGS.get(profile.income_category)
        if ceiling is None:
            reasons.append("income category unknown")
        elif ceiling > criteria.max_income:
            reasons.append(
                f"income category '{profile.income_category.value}' exceeds "
                f"income ceiling {criteria.max_income:,.0f}"
            )

    if criteria.requires_ration_card:
        if not profile.has_ration_card:
            reasons.append("ration card required")
        elif criteria.allowed_card_types and profile.ration_card_type not in criteria.allowed_card_types:
            allowed = ", ".join(t.value for t in criteria.allowed_card_types)
            actual = profile.ration_card_type.value if profile.ration_card_type else "none"
            reasons.append(f"ration card type '{actual}' not in allowed types ({allowed})")

    if criteria.is_for_pregnant_women and not profile.is_pregnant:
        reasons.append("scheme is for pregnant women")
    if criteria.is_for_children and not profile.has_children:
        reasons.append("scheme is for families with children")

    for key, expected in criteria.additional_conditions.items():
        if key not in _PROFILE_FIELDS:
            continue  # unknown keys never block eligibility
        actual = getattr(profile, key)
        if isinstance(expected, _COMPOSITE_TYPES) or isinstance(actual, _COMPOSITE_TYPES):
            flags.append(f"condition '{key}' has a composite value and was not evaluated")
            continue
        if _scalar(actual) != _scalar(expected):
            reasons.append(f"{key} is {_scalar(actual)!r}, scheme requires {_scalar(expected)!r}")

    return reasons, flags


class EligibilityEngine(BaseService):
    """
    Read-only evaluation of scheme criteria.

    Usage:
        engine = EligibilityEngine(local_db)
        for result in engine.evaluate(profile):
            print(result.scheme.display_name("hi"), result.matched, result.reasons)
    """

    def __init__(self, db: LocalDatabase):
        super().__init__()
        self._db = db

    def evaluate(self, profile: UserProfile) -> List[EligibilityResult]:
        """
        Evaluate the profile against every stored scheme.

        Raises:
            ValidationFailure: the profile itself is invalid
        """
        profile.validate()
        results = []
        for scheme in self._db.query(HealthScheme.ENTITY_TYPE):
            reasons, flags = evaluate_criteria(scheme.criteria, profile)
            results.append(EligibilityResult(
                scheme=scheme,
                matched=not reasons,
                reasons=reasons,
                flags=flags,
            ))

        self.logger.debug(
            f"Evaluated {len(results)} schemes for profile {profile.id}: "
            f"{sum(r.matched for r in results)} matched"
        )
        return results

    def matched_schemes(self, profile: UserProfile) -> List[HealthScheme]:
        """Schemes the profile qualifies for, in store order."""
        return [r.scheme for r in self.evaluate(profile) if r.matched]
