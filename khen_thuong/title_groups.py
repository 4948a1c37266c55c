"""Title-family mutual exclusion within a single proposal."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .exceptions import TitleFamilyConflictError
from .models import ProposalType, TitleCheck, TitleFamily
from .rule_tables import PERSONNEL_PROPOSAL_TYPES, get_default_title_families

logger = logging.getLogger(__name__)


def family_of(
    title: str,
    proposal_type: Optional[ProposalType] = None,
    families: Optional[Dict[ProposalType, List[TitleFamily]]] = None,
) -> Optional[TitleFamily]:
    """Family containing ``title``; personnel proposal types are searched
    in order when ``proposal_type`` is omitted."""
    registry = families if families is not None else get_default_title_families()
    search = (proposal_type,) if proposal_type is not None else PERSONNEL_PROPOSAL_TYPES
    for ptype in search:
        for family in registry.get(ptype, []):
            if title in family.titles:
                return family
    return None


def titles_for(
    proposal_type: ProposalType,
    families: Optional[Dict[ProposalType, List[TitleFamily]]] = None,
) -> List[str]:
    registry = families if families is not None else get_default_title_families()
    return [t for family in registry.get(proposal_type, []) for t in family.titles]


def can_add_title(
    current_titles: Iterable[str],
    candidate: str,
    proposal_type: Optional[ProposalType] = None,
    families: Optional[Dict[ProposalType, List[TitleFamily]]] = None,
) -> TitleCheck:
    """Whether ``candidate`` may join a proposal already holding ``current_titles``.

    An empty proposal accepts any candidate; rejecting titles unknown to the
    proposal type is left to the draft. Present titles outside every family
    do not constrain the candidate.
    """
    present = {t for t in current_titles if t}
    if not present:
        return TitleCheck(allowed=True)

    candidate_family = family_of(candidate, proposal_type, families)
    if candidate_family is None:
        scope = proposal_type.value if proposal_type is not None else "personnel proposals"
        return TitleCheck(allowed=False, reason=f"unknown title {candidate} for {scope}")

    present_families: Dict[str, TitleFamily] = {}
    for title in sorted(present):
        fam = family_of(title, proposal_type, families)
        if fam is not None:
            present_families[fam.family_id] = fam

    for family_id, fam in present_families.items():
        if family_id != candidate_family.family_id:
            logger.debug("Title %s conflicts with family %s", candidate, family_id)
            return TitleCheck(
                allowed=False,
                reason=(
                    f"cannot propose {candidate} ({candidate_family.label}) together with "
                    f"{fam.label} in one proposal; create a separate proposal"
                ),
                conflicting_family=family_id,
            )

    return TitleCheck(allowed=True)


def raise_for_conflict(
    current_titles: Iterable[str],
    candidate: str,
    proposal_type: Optional[ProposalType] = None,
) -> None:
    check = can_add_title(current_titles, candidate, proposal_type)
    if not check.allowed:
        raise TitleFamilyConflictError(candidate, check.reason or "", check.conflicting_family)
