"""Built-in medal-tier requirements, consecutive-years annual rules and
title families + lookup functions.

The defaults below can be overridden per ``FAMILY.TIER`` from the
``rules.requirements`` section of ``config.yaml`` (see
``apply_rule_overrides``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    ConsecutiveYearsRequirement,
    EntityKind,
    MedalTierRequirement,
    ProposalType,
    ServiceBasis,
    TitleFamily,
)

logger = logging.getLogger(__name__)

HCCSVV = "HCCSVV"
HC_QKQT = "HC_QKQT"
KNC_VSNXD_QDNDVN = "KNC_VSNXD_QDNDVN"
HCBVTQ = "HCBVTQ"

HANG_BA = "HANG_BA"
HANG_NHI = "HANG_NHI"
HANG_NHAT = "HANG_NHAT"

_M = ServiceBasis

# ── Medal-tier requirements ─────────────────────────────────────────────────
# Thresholds in months. HCBVTQ counts months held in positions whose
# coefficient is >= coefficient_floor; female service counts 2/3.

_DEFAULT_REQUIREMENTS: List[MedalTierRequirement] = [
    # ── HCCSVV: Hạng Ba → Hạng Nhì → Hạng Nhất ──
    MedalTierRequirement(
        medal_family=HCCSVV, tier_code=HANG_BA, title_code="HCCSVV_HANG_BA",
        rank=1, min_months_of_service=10 * 12,
        label="Huân chương Chiến sỹ Vẻ vang Hạng Ba",
    ),
    MedalTierRequirement(
        medal_family=HCCSVV, tier_code=HANG_NHI, title_code="HCCSVV_HANG_NHI",
        rank=2, min_months_of_service=15 * 12, prerequisite_tier_code=HANG_BA,
        label="Huân chương Chiến sỹ Vẻ vang Hạng Nhì",
    ),
    MedalTierRequirement(
        medal_family=HCCSVV, tier_code=HANG_NHAT, title_code="HCCSVV_HANG_NHAT",
        rank=3, min_months_of_service=20 * 12, prerequisite_tier_code=HANG_NHI,
        label="Huân chương Chiến sỹ Vẻ vang Hạng Nhất",
    ),
    # ── HC Quân kỳ Quyết thắng: 25 năm, no gender distinction ──
    MedalTierRequirement(
        medal_family=HC_QKQT, tier_code=HC_QKQT, title_code=HC_QKQT,
        min_months_of_service=25 * 12,
        label="Huy chương Quân kỳ Quyết thắng",
    ),
    # ── Kỷ niệm chương VSNXD QĐNDVN: nữ >= 20 năm, nam >= 25 năm ──
    MedalTierRequirement(
        medal_family=KNC_VSNXD_QDNDVN, tier_code=KNC_VSNXD_QDNDVN, title_code=KNC_VSNXD_QDNDVN,
        min_months_of_service=25 * 12, female_min_months=20 * 12, gender_required=True,
        label="Kỷ niệm chương Vì sự nghiệp xây dựng QĐNDVN",
    ),
    # ── HCBVTQ: Hạng Ba → Hạng Nhì → Hạng Nhất, coefficient-weighted months ──
    MedalTierRequirement(
        medal_family=HCBVTQ, tier_code=HANG_BA, title_code="HCBVTQ_HANG_BA",
        rank=1, min_months_of_service=10 * 12, female_min_months=round(10 * 12 * 2 / 3),
        basis=_M.position_coefficient, coefficient_floor=0.7,
        label="Huân chương Bảo vệ Tổ quốc Hạng Ba",
    ),
    MedalTierRequirement(
        medal_family=HCBVTQ, tier_code=HANG_NHI, title_code="HCBVTQ_HANG_NHI",
        rank=2, min_months_of_service=10 * 12, female_min_months=round(10 * 12 * 2 / 3),
        prerequisite_tier_code=HANG_BA,
        basis=_M.position_coefficient, coefficient_floor=0.8,
        label="Huân chương Bảo vệ Tổ quốc Hạng Nhì",
    ),
    MedalTierRequirement(
        medal_family=HCBVTQ, tier_code=HANG_NHAT, title_code="HCBVTQ_HANG_NHAT",
        rank=3, min_months_of_service=10 * 12, female_min_months=round(10 * 12 * 2 / 3),
        prerequisite_tier_code=HANG_NHI,
        basis=_M.position_coefficient, coefficient_floor=0.9,
        label="Huân chương Bảo vệ Tổ quốc Hạng Nhất",
    ),
]


# ── Annual titles earned by consecutive years ───────────────────────────────
# Personnel: consecutive CSTDCS years, a CSTDTQ grant restarts the run.
# Units: consecutive years with a positive tracked headcount.

_DEFAULT_CONSECUTIVE_REQUIREMENTS: List[ConsecutiveYearsRequirement] = [
    ConsecutiveYearsRequirement(
        title_code="BKBQP", min_years=5,
        label="Bằng khen của Bộ trưởng Bộ Quốc phòng",
    ),
    ConsecutiveYearsRequirement(
        title_code="CSTDTQ", min_years=10, requires_achievement=True,
        label="Chiến sĩ thi đua Toàn quân",
    ),
    ConsecutiveYearsRequirement(
        title_code="BKBQP", entity_kind=EntityKind.unit, min_years=3,
        label="Bằng khen của Bộ trưởng Bộ Quốc phòng (đơn vị)",
    ),
    ConsecutiveYearsRequirement(
        title_code="BKTTCP", entity_kind=EntityKind.unit, min_years=5,
        label="Bằng khen Thủ tướng Chính phủ",
    ),
]



# ── Title families (mutual exclusion within one proposal) ───────────────────
_DEFAULT_TITLE_FAMILIES: Dict[ProposalType, List[TitleFamily]] = {
    ProposalType.CA_NHAN_HANG_NAM: [
        TitleFamily(family_id="CSTDCS_CSTT", label="CSTDCS/CSTT", titles=["CSTDCS", "CSTT"]),
        TitleFamily(family_id="BKBQP_CSTDTQ", label="BKBQP/CSTDTQ", titles=["BKBQP", "CSTDTQ"]),
    ],
    ProposalType.NIEN_HAN: [
        TitleFamily(
            family_id=HCCSVV, label="HCCSVV",
            titles=["HCCSVV_HANG_BA", "HCCSVV_HANG_NHI", "HCCSVV_HANG_NHAT"],
        ),
        TitleFamily(family_id=HC_QKQT, label="HC QKQT", titles=[HC_QKQT]),
        TitleFamily(family_id=KNC_VSNXD_QDNDVN, label="KNC VSNXD QĐNDVN", titles=[KNC_VSNXD_QDNDVN]),
    ],
    ProposalType.CONG_HIEN: [
        TitleFamily(
            family_id=HCBVTQ, label="HCBVTQ",
            titles=["HCBVTQ_HANG_BA", "HCBVTQ_HANG_NHI", "HCBVTQ_HANG_NHAT"],
        ),
    ],
    ProposalType.DON_VI_HANG_NAM: [
        TitleFamily(
            family_id="DON_VI_HANG_NAM", label="Đơn vị hằng năm",
            titles=["ĐVQT", "ĐVTT", "BKBQP", "BKTTCP"],
        ),
    ],
}

# Searched in order when a title check carries no proposal type.
PERSONNEL_PROPOSAL_TYPES: Tuple[ProposalType, ...] = (
    ProposalType.CA_NHAN_HANG_NAM,
    ProposalType.NIEN_HAN,
    ProposalType.CONG_HIEN,
)


def get_default_requirements() -> List[MedalTierRequirement]:
    return [r.model_copy() for r in _DEFAULT_REQUIREMENTS]


def get_default_consecutive_requirements() -> List[ConsecutiveYearsRequirement]:
    return [r.model_copy() for r in _DEFAULT_CONSECUTIVE_REQUIREMENTS]


def lookup_consecutive(
    table: List[ConsecutiveYearsRequirement],
    title_code: str,
    entity_kind: EntityKind = EntityKind.personnel,
) -> Optional[ConsecutiveYearsRequirement]:
    """Find the consecutive-years row for an annual title and entity kind."""
    for row in table:
        if row.title_code == title_code and row.entity_kind == entity_kind:
            return row
    return None


def get_default_title_families() -> Dict[ProposalType, List[TitleFamily]]:
    return {k: list(v) for k, v in _DEFAULT_TITLE_FAMILIES.items()}


def lookup_requirement(
    table: List[MedalTierRequirement],
    medal_family: str,
    tier_code: str,
) -> Optional[MedalTierRequirement]:
    """Find the requirement row for (family, tier)."""
    for row in table:
        if row.medal_family == medal_family and row.tier_code == tier_code:
            return row
    return None


def lookup_title(
    table: List[MedalTierRequirement],
    title_code: str,
) -> Optional[MedalTierRequirement]:
    """Find the requirement row whose proposal title code is ``title_code``."""
    for row in table:
        if row.title_code == title_code:
            return row
    return None


def tiers_of(table: List[MedalTierRequirement], medal_family: str) -> List[MedalTierRequirement]:
    """Tiers of one family, lowest rank first."""
    return sorted((r for r in table if r.medal_family == medal_family), key=lambda r: r.rank)


def apply_rule_overrides(
    overrides: Optional[Dict[str, Dict[str, Any]]],
    base: Optional[List[MedalTierRequirement]] = None,
) -> List[MedalTierRequirement]:
    """Merge ``{"FAMILY.TIER": {field: value}}`` overrides onto the table.

    Unknown keys are logged and skipped; a key may not introduce a new tier.
    """
    table = [r.model_copy() for r in (base if base is not None else _DEFAULT_REQUIREMENTS)]
    if not overrides:
        return table

    for key, fields in overrides.items():
        family, _, tier = key.partition(".")
        tier = tier or family
        idx = next(
            (i for i, r in enumerate(table) if r.medal_family == family and r.tier_code == tier),
            None,
        )
        if idx is None:
            logger.warning("Ignoring rule override for unknown tier %s", key)
            continue
        merged = {**table[idx].model_dump(), **(fields or {})}
        table[idx] = MedalTierRequirement.model_validate(merged)
        logger.info("Rule override applied: %s -> %s", key, fields)

    return table


def validate_requirement_table(table: List[MedalTierRequirement]) -> List[str]:
    """Return problems that break the strict tier order of a family."""
    problems: List[str] = []
    families = sorted({r.medal_family for r in table})
    for family in families:
        tiers = tiers_of(table, family)
        ranks = [t.rank for t in tiers]
        if len(set(ranks)) != len(ranks):
            problems.append(f"{family}: duplicate tier ranks {ranks}")
        codes = {t.tier_code for t in tiers}
        for t in tiers:
            if t.prerequisite_tier_code is None:
                continue
            if t.prerequisite_tier_code not in codes:
                problems.append(f"{family}.{t.tier_code}: unknown prerequisite {t.prerequisite_tier_code}")
                continue
            prereq = lookup_requirement(tiers, family, t.prerequisite_tier_code)
            if prereq is not None and prereq.rank >= t.rank:
                problems.append(
                    f"{family}.{t.tier_code}: prerequisite {prereq.tier_code} does not rank below it"
                )
    return problems
