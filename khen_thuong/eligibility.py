"""Medal-tier and annual-title eligibility rules.

Evaluation order per (family, tier):
  unknown tier → already granted → gender gate → enlistment date →
  prerequisite tier → service-duration threshold.

Annual titles without a tier (BKBQP, CSTDTQ, unit BKTTCP, ...) are checked
against consecutive-year runs in the annual profile instead.

Every failure is returned as ``EligibilityResult(eligible=False, reason=...)``;
``require_eligible`` is the raising variant.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar, Union

from .duration import compute_duration, format_months
from .exceptions import IneligibleTierError, InvalidDateRange
from .models import (
    AnnualProfile,
    AnnualTitleRecord,
    AwardHistory,
    ComparisonMode,
    ConsecutiveYearsRequirement,
    EligibilityResult,
    EntityKind,
    MedalTierRequirement,
    PersonnelRecord,
    PositionHistoryEntry,
    ServiceBasis,
    UnitAnnualProfile,
    UnitAnnualRecord,
)
from .rule_tables import (
    get_default_consecutive_requirements,
    get_default_requirements,
    lookup_consecutive,
    lookup_requirement,
    lookup_title,
    tiers_of,
)

logger = logging.getLogger(__name__)

REASON_UNKNOWN_TIER = "unknown tier"
REASON_ALREADY_GRANTED = "already granted"
REASON_GENDER_NOT_SET = "gender not set"
REASON_MISSING_ENLISTMENT = "missing enlistment date"
REASON_INSUFFICIENT_DURATION = "insufficient duration"
REASON_ANNUAL_PROFILE_REQUIRED = "annual profile required"
REASON_INSUFFICIENT_YEARS = "insufficient consecutive years"
REASON_MISSING_ACHIEVEMENT = "missing scientific achievement"

CSTDCS = "CSTDCS"

_R = TypeVar("_R", AnnualTitleRecord, UnitAnnualRecord)


def _deny(
    req: Optional[Union[MedalTierRequirement, ConsecutiveYearsRequirement]],
    reason: str,
    **extra,
) -> EligibilityResult:
    return EligibilityResult(
        eligible=False,
        reason=reason,
        title_code=req.title_code if req else None,
        **extra,
    )


def _run_length(records: Iterable[_R], qualifies: Callable[[_R], bool], up_to_year: Optional[int]) -> int:
    count = 0
    expected: Optional[int] = None
    for rec in sorted(records, key=lambda r: r.year, reverse=True):
        if up_to_year is not None and rec.year > up_to_year:
            continue
        if expected is not None and rec.year != expected:
            break
        if not qualifies(rec):
            break
        count += 1
        expected = rec.year - 1
    return count


def consecutive_cstdcs_years(records: Iterable[AnnualTitleRecord], up_to_year: Optional[int] = None) -> int:
    """Unbroken run of CSTDCS years ending at the latest record.

    Any gap or non-CSTDCS year ends the run. So does a year in which CSTDTQ
    was received, so only later years count toward the next award.
    """
    return _run_length(records, lambda r: r.title == CSTDCS and not r.received_cstdtq, up_to_year)


def consecutive_unit_years(records: Iterable[UnitAnnualRecord], up_to_year: Optional[int] = None) -> int:
    """Unbroken run of years in which the unit tracked a positive headcount."""
    return _run_length(records, lambda r: r.personnel_count > 0, up_to_year)


def months_in_coefficient_range(
    history: Iterable[PositionHistoryEntry],
    floor: float,
    ceiling: float = 1.0,
) -> int:
    """Months held in positions with ``floor <= coefficient <= ceiling``."""
    total = 0
    for entry in history:
        if entry.months is None:
            continue
        if floor <= entry.coefficient <= ceiling:
            total += entry.months
    return total


def _check_enlistment_basis(
    personnel: PersonnelRecord,
    req: MedalTierRequirement,
    threshold: int,
    today: Optional[date],
) -> EligibilityResult:
    try:
        duration = compute_duration(personnel.enlistment_date, personnel.separation_date, today=today)
    except InvalidDateRange as e:
        return _deny(req, f"invalid service dates: {e}")

    if req.comparison == ComparisonMode.anniversary_year:
        end = personnel.separation_date or today or date.today()
        eligible_year = personnel.enlistment_date.year + threshold // 12
        if end.year < eligible_year:
            return _deny(
                req,
                f"{REASON_INSUFFICIENT_DURATION}: eligible from year {eligible_year}, "
                f"has {format_months(duration.total_months)}",
                required_months=threshold,
                actual_months=duration.total_months,
            )
    elif duration.total_months < threshold:
        return _deny(
            req,
            f"{REASON_INSUFFICIENT_DURATION}: requires {format_months(threshold)}, "
            f"has {format_months(duration.total_months)}",
            required_months=threshold,
            actual_months=duration.total_months,
        )

    return EligibilityResult(
        eligible=True,
        title_code=req.title_code,
        required_months=threshold,
        actual_months=duration.total_months,
    )


def _check_position_basis(
    req: MedalTierRequirement,
    threshold: int,
    position_history: Optional[List[PositionHistoryEntry]],
) -> EligibilityResult:
    floor = req.coefficient_floor if req.coefficient_floor is not None else 0.0
    months = months_in_coefficient_range(position_history or [], floor)
    if months < threshold:
        return _deny(
            req,
            f"{REASON_INSUFFICIENT_DURATION}: requires {format_months(threshold)} "
            f"in positions with coefficient >= {floor}, has {format_months(months)}",
            required_months=threshold,
            actual_months=months,
        )
    return EligibilityResult(
        eligible=True,
        title_code=req.title_code,
        required_months=threshold,
        actual_months=months,
    )


def is_eligible(
    personnel: PersonnelRecord,
    medal_family: str,
    tier_code: str,
    award_history: Optional[AwardHistory] = None,
    *,
    today: Optional[date] = None,
    position_history: Optional[List[PositionHistoryEntry]] = None,
    requirements: Optional[List[MedalTierRequirement]] = None,
) -> EligibilityResult:
    """Whether ``personnel`` may be proposed for ``medal_family``/``tier_code``."""
    table = requirements if requirements is not None else get_default_requirements()
    history = award_history or AwardHistory()

    req = lookup_requirement(table, medal_family, tier_code)
    if req is None:
        return _deny(None, f"{REASON_UNKNOWN_TIER}: {medal_family}.{tier_code}")

    if history.is_granted(medal_family, tier_code):
        logger.debug("%s: %s already granted", personnel.id, req.title_code)
        return _deny(req, REASON_ALREADY_GRANTED)

    if req.gender_required and personnel.gender is None:
        return _deny(req, REASON_GENDER_NOT_SET)

    if req.basis == ServiceBasis.enlistment and personnel.enlistment_date is None:
        return _deny(req, REASON_MISSING_ENLISTMENT)

    if req.prerequisite_tier_code and not history.is_granted(medal_family, req.prerequisite_tier_code):
        prereq = lookup_requirement(table, medal_family, req.prerequisite_tier_code)
        prereq_name = prereq.title_code if prereq else f"{medal_family}_{req.prerequisite_tier_code}"
        return _deny(req, f"missing prerequisite {prereq_name}: must be granted first")

    threshold = req.threshold_for(personnel.gender)
    if req.basis == ServiceBasis.position_coefficient:
        result = _check_position_basis(req, threshold, position_history)
    else:
        result = _check_enlistment_basis(personnel, req, threshold, today)

    if not result.eligible:
        logger.debug("%s: %s rejected (%s)", personnel.id, req.title_code, result.reason)
    return result


def check_annual_title(
    req: ConsecutiveYearsRequirement,
    annual_profile: Optional[AnnualProfile],
    *,
    year: Optional[int] = None,
) -> EligibilityResult:
    """Consecutive-CSTDCS check for a personnel annual title."""
    if annual_profile is None:
        return _deny(req, REASON_ANNUAL_PROFILE_REQUIRED)

    years = consecutive_cstdcs_years(annual_profile.titles, year)
    if years < req.min_years:
        return _deny(
            req,
            f"{REASON_INSUFFICIENT_YEARS}: requires {req.min_years} consecutive "
            f"{CSTDCS} years, has {years}",
            required_years=req.min_years,
            actual_years=years,
        )
    if req.requires_achievement and not annual_profile.approved_achievements():
        return _deny(
            req,
            f"{REASON_MISSING_ACHIEVEMENT}: requires at least one approved NCKH/SKKH",
            required_years=req.min_years,
            actual_years=years,
        )
    return EligibilityResult(
        eligible=True, title_code=req.title_code, required_years=req.min_years, actual_years=years,
    )


def check_title(
    personnel: PersonnelRecord,
    title_code: str,
    award_history: Optional[AwardHistory] = None,
    *,
    today: Optional[date] = None,
    position_history: Optional[List[PositionHistoryEntry]] = None,
    annual_profile: Optional[AnnualProfile] = None,
    year: Optional[int] = None,
    requirements: Optional[List[MedalTierRequirement]] = None,
    consecutive_requirements: Optional[Sequence[ConsecutiveYearsRequirement]] = None,
) -> EligibilityResult:
    """Eligibility by proposal title code.

    Medal-tier titles go through ``is_eligible``; annual titles with a
    consecutive-years rule need ``annual_profile`` and are counted up to
    ``year``. Titles with neither rule pass.
    """
    table = requirements if requirements is not None else get_default_requirements()
    req = lookup_title(table, title_code)
    if req is not None:
        return is_eligible(
            personnel,
            req.medal_family,
            req.tier_code,
            award_history,
            today=today,
            position_history=position_history,
            requirements=table,
        )

    annual_table = (
        consecutive_requirements if consecutive_requirements is not None
        else get_default_consecutive_requirements()
    )
    annual_req = lookup_consecutive(list(annual_table), title_code, EntityKind.personnel)
    if annual_req is not None:
        result = check_annual_title(annual_req, annual_profile, year=year)
        if not result.eligible:
            logger.debug("%s: %s rejected (%s)", personnel.id, title_code, result.reason)
        return result

    return EligibilityResult(eligible=True, title_code=title_code)


def check_unit_title(
    unit_id: str,
    title_code: str,
    unit_profile: Optional[UnitAnnualProfile],
    *,
    year: Optional[int] = None,
    consecutive_requirements: Optional[Sequence[ConsecutiveYearsRequirement]] = None,
) -> EligibilityResult:
    """Consecutive-years check for a unit annual title; titles without a rule pass."""
    annual_table = (
        consecutive_requirements if consecutive_requirements is not None
        else get_default_consecutive_requirements()
    )
    req = lookup_consecutive(list(annual_table), title_code, EntityKind.unit)
    if req is None:
        return EligibilityResult(eligible=True, title_code=title_code)
    if unit_profile is None:
        return _deny(req, REASON_ANNUAL_PROFILE_REQUIRED)

    years = consecutive_unit_years(unit_profile.records, year)
    if years < req.min_years:
        logger.debug("unit %s: %s rejected after %d years", unit_id, title_code, years)
        return _deny(
            req,
            f"{REASON_INSUFFICIENT_YEARS}: requires {req.min_years} consecutive years, has {years}",
            required_years=req.min_years,
            actual_years=years,
        )
    return EligibilityResult(
        eligible=True, title_code=req.title_code, required_years=req.min_years, actual_years=years,
    )


def eligible_titles(
    personnel: PersonnelRecord,
    medal_family: str,
    award_history: Optional[AwardHistory] = None,
    *,
    today: Optional[date] = None,
    position_history: Optional[List[PositionHistoryEntry]] = None,
    requirements: Optional[List[MedalTierRequirement]] = None,
) -> List[str]:
    """Title codes of ``medal_family`` the person can be proposed for now."""
    table = requirements if requirements is not None else get_default_requirements()
    titles: List[str] = []
    for req in tiers_of(table, medal_family):
        result = is_eligible(
            personnel,
            medal_family,
            req.tier_code,
            award_history,
            today=today,
            position_history=position_history,
            requirements=table,
        )
        if result.eligible:
            titles.append(req.title_code)
    return titles


def require_eligible(
    personnel: PersonnelRecord,
    medal_family: str,
    tier_code: str,
    award_history: Optional[AwardHistory] = None,
    **kwargs,
) -> EligibilityResult:
    result = is_eligible(personnel, medal_family, tier_code, award_history, **kwargs)
    if not result.eligible:
        raise IneligibleTierError(result.title_code or f"{medal_family}.{tier_code}", result.reason or "")
    return result
