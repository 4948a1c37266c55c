"""Proposal draft aggregator.

A draft collects the entities of one proposal and the title data chosen for
each, enforcing title-family exclusion and eligibility (medal tiers and
consecutive-year annual titles) on every assignment:

    EMPTY → IN_PROGRESS ⇄ COMPLETE → SUBMITTED

A rejected assignment returns ``TitleCheck(allowed=False)`` and leaves the
draft untouched. Once submitted the draft is consumed; every further
operation raises ``DraftConsumedError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .eligibility import check_title, check_unit_title
from .exceptions import (
    DraftConsumedError,
    EntityKindConflictError,
    IncompleteDraftError,
    InvalidProposalError,
)
from .models import (
    AchievementCategory,
    AnnualProfile,
    AwardHistory,
    ConsecutiveYearsRequirement,
    DraftDocument,
    DraftState,
    EligibilityResult,
    EntityKind,
    MedalTierRequirement,
    PersonnelRecord,
    PositionHistoryEntry,
    ProposalContext,
    ProposalType,
    Role,
    SubmissionPayload,
    TitleAssignment,
    TitleCheck,
    TitleFamily,
    UnitAnnualProfile,
    UnitKind,
    UnitRecord,
)
from .rule_tables import (
    get_default_consecutive_requirements,
    get_default_requirements,
    get_default_title_families,
)
from .title_groups import can_add_title, titles_for

logger = logging.getLogger(__name__)


def entity_kind_for(proposal_type: ProposalType) -> EntityKind:
    if proposal_type == ProposalType.DON_VI_HANG_NAM:
        return EntityKind.unit
    return EntityKind.personnel


def check_proposal_policy(proposal_type: ProposalType, year: int, context: ProposalContext) -> None:
    """Raise ``InvalidProposalError`` for a type/year/role the backend refuses."""
    if year <= 0:
        raise InvalidProposalError(f"invalid proposal year {year}")
    if proposal_type == ProposalType.DON_VI_HANG_NAM and year != context.today.year + 1:
        raise InvalidProposalError(
            f"{proposal_type.value} proposals target next year "
            f"({context.today.year + 1}), got {year}"
        )
    if proposal_type == ProposalType.DOT_XUAT and context.role == Role.MANAGER:
        raise InvalidProposalError(f"role {context.role.value} may not create {proposal_type.value} proposals")


@dataclass
class DraftEntry:
    entity_id: str
    kind: EntityKind
    personnel: Optional[PersonnelRecord] = None
    unit: Optional[UnitRecord] = None
    unit_kind: Optional[UnitKind] = None
    award_history: Optional[AwardHistory] = None
    position_history: List[PositionHistoryEntry] = field(default_factory=list)
    annual_profile: Optional[Union[AnnualProfile, UnitAnnualProfile]] = None
    title: Optional[str] = None
    category: Optional[AchievementCategory] = None
    description: Optional[str] = None

    def is_satisfied(self, proposal_type: ProposalType) -> bool:
        if proposal_type == ProposalType.NCKH:
            return self.category is not None and bool((self.description or "").strip())
        return bool(self.title)

    def to_assignment(self) -> TitleAssignment:
        return TitleAssignment(
            entity_id=self.entity_id,
            entity_kind=self.kind,
            title=self.title,
            unit_kind=self.unit_kind,
            category=self.category,
            description=self.description,
        )


class ProposalDraft:
    """Client-side assembly of one proposal before submission."""

    def __init__(
        self,
        proposal_type: ProposalType,
        year: int,
        *,
        context: Optional[ProposalContext] = None,
        requirements: Optional[List[MedalTierRequirement]] = None,
        families: Optional[Dict[ProposalType, List[TitleFamily]]] = None,
        consecutive_requirements: Optional[List[ConsecutiveYearsRequirement]] = None,
    ) -> None:
        self.proposal_type = ProposalType(proposal_type)
        self.year = year
        self.context = context or ProposalContext()
        check_proposal_policy(self.proposal_type, year, self.context)

        self.entity_kind = entity_kind_for(self.proposal_type)
        self._requirements = requirements if requirements is not None else get_default_requirements()
        self._families = families if families is not None else get_default_title_families()
        self._consecutive = (
            consecutive_requirements if consecutive_requirements is not None
            else get_default_consecutive_requirements()
        )
        self._entries: Dict[str, DraftEntry] = {}
        self._submitted = False
        self._submitting = False

    # ── Introspection ───────────────────────────────────────────────────
    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    @property
    def entity_ids(self) -> List[str]:
        return list(self._entries)

    def entry(self, entity_id: str) -> DraftEntry:
        try:
            return self._entries[entity_id]
        except KeyError:
            raise KeyError(f"entity {entity_id} is not part of this draft") from None

    def titles(self) -> Dict[str, Optional[str]]:
        return {eid: e.title for eid, e in self._entries.items()}

    def missing(self) -> List[str]:
        """Entity ids still lacking title data."""
        return [eid for eid, e in self._entries.items() if not e.is_satisfied(self.proposal_type)]

    def is_complete(self) -> bool:
        return bool(self._entries) and not self.missing()

    @property
    def state(self) -> DraftState:
        if self._submitted:
            return DraftState.SUBMITTED
        if not self._entries:
            return DraftState.EMPTY
        if self.is_complete():
            return DraftState.COMPLETE
        return DraftState.IN_PROGRESS

    def _ensure_open(self) -> None:
        if self._submitted:
            raise DraftConsumedError("draft was already submitted")
        if self._submitting:
            raise DraftConsumedError("draft submission is in progress")

    # ── Entities ────────────────────────────────────────────────────────
    def add_entity(
        self,
        entity: Union[PersonnelRecord, UnitRecord, str],
        *,
        award_history: Optional[AwardHistory] = None,
        position_history: Optional[List[PositionHistoryEntry]] = None,
        annual_profile: Optional[Union[AnnualProfile, UnitAnnualProfile]] = None,
        unit_kind: Optional[UnitKind] = None,
    ) -> DraftEntry:
        """Add a personnel record, a unit or a bare id; re-adding an id is a no-op.

        Eligibility is only evaluated for entities added as full records.
        """
        self._ensure_open()

        personnel: Optional[PersonnelRecord] = None
        unit: Optional[UnitRecord] = None
        if isinstance(entity, PersonnelRecord):
            kind, entity_id, personnel = EntityKind.personnel, entity.id, entity
        elif isinstance(entity, UnitRecord):
            kind, entity_id, unit = EntityKind.unit, entity.id, entity
            unit_kind = unit_kind or entity.unit_kind
        else:
            kind, entity_id = self.entity_kind, str(entity)

        if kind != self.entity_kind:
            raise EntityKindConflictError(
                f"{self.proposal_type.value} proposals take {self.entity_kind.value} entities, "
                f"got {kind.value} {entity_id}"
            )

        existing = self._entries.get(entity_id)
        if existing is not None:
            return existing

        entry = DraftEntry(
            entity_id=entity_id,
            kind=kind,
            personnel=personnel,
            unit=unit,
            unit_kind=(unit_kind or UnitKind.CO_QUAN_DON_VI) if kind == EntityKind.unit else None,
            award_history=award_history,
            position_history=list(position_history or []),
            annual_profile=annual_profile,
        )
        self._entries[entity_id] = entry
        logger.debug("Draft %s: added %s %s", self.proposal_type.value, kind.value, entity_id)
        return entry

    def remove_entity(self, entity_id: str) -> bool:
        self._ensure_open()
        removed = self._entries.pop(entity_id, None)
        return removed is not None

    # ── Title data ──────────────────────────────────────────────────────
    def assign_title(
        self,
        entity_id: str,
        title: Optional[str] = None,
        *,
        category: Optional[Union[AchievementCategory, str]] = None,
        description: Optional[str] = None,
    ) -> TitleCheck:
        self._ensure_open()
        entry = self.entry(entity_id)

        if self.proposal_type == ProposalType.NCKH:
            return self._assign_achievement(entry, category, description)

        if not title:
            entry.title = None
            return TitleCheck(allowed=True)

        check = self._check_title(entry, title)
        if not check.allowed:
            logger.info(
                "Draft %s: rejected %s for %s (%s)",
                self.proposal_type.value, title, entity_id, check.reason,
            )
            return check

        entry.title = title
        return check

    def _assign_achievement(
        self,
        entry: DraftEntry,
        category: Optional[Union[AchievementCategory, str]],
        description: Optional[str],
    ) -> TitleCheck:
        if category is None:
            return TitleCheck(allowed=False, reason="achievement category is required")
        try:
            parsed = AchievementCategory(category)
        except ValueError:
            return TitleCheck(allowed=False, reason=f"unknown achievement category {category}")
        entry.category = parsed
        entry.description = description
        return TitleCheck(allowed=True)

    def _check_title(self, entry: DraftEntry, title: str) -> TitleCheck:
        known = titles_for(self.proposal_type, self._families)
        if known:
            if title not in known:
                return TitleCheck(
                    allowed=False,
                    reason=f"unknown title {title} for {self.proposal_type.value}",
                )
            others = [e.title for eid, e in self._entries.items() if eid != entry.entity_id and e.title]
            family_check = can_add_title(others, title, self.proposal_type, self._families)
            if not family_check.allowed:
                return family_check

        result: Optional[EligibilityResult] = None
        if entry.personnel is not None:
            annual = entry.annual_profile if isinstance(entry.annual_profile, AnnualProfile) else None
            result = check_title(
                entry.personnel,
                title,
                entry.award_history,
                today=self.context.today,
                position_history=entry.position_history,
                annual_profile=annual,
                year=self.year,
                requirements=self._requirements,
                consecutive_requirements=self._consecutive,
            )
        elif entry.unit is not None:
            unit_profile = entry.annual_profile if isinstance(entry.annual_profile, UnitAnnualProfile) else None
            result = check_unit_title(
                entry.entity_id,
                title,
                unit_profile,
                year=self.year,
                consecutive_requirements=self._consecutive,
            )
        if result is not None and not result.eligible:
            return TitleCheck(allowed=False, reason=result.reason)

        return TitleCheck(allowed=True)

    def clear_title(self, entity_id: str) -> None:
        self._ensure_open()
        entry = self.entry(entity_id)
        entry.title = None
        entry.category = None
        entry.description = None

    # ── Submission ──────────────────────────────────────────────────────
    def to_submission_payload(self) -> SubmissionPayload:
        self._ensure_open()
        if not self._entries:
            raise IncompleteDraftError("draft has no entities")
        missing = self.missing()
        if missing:
            raise IncompleteDraftError(f"missing title data for: {', '.join(missing)}")
        return SubmissionPayload(
            proposal_type=self.proposal_type,
            year=self.year,
            entity_kind=self.entity_kind,
            entity_ids=list(self._entries),
            title_data=[e.to_assignment() for e in self._entries.values()],
        )

    def submit(self) -> SubmissionPayload:
        """Produce the payload and consume the draft."""
        payload = self.to_submission_payload()
        self._submitted = True
        logger.info(
            "Draft %s/%s submitted with %d %s entities",
            self.proposal_type.value, self.year, len(payload.entity_ids), self.entity_kind.value,
        )
        return payload

    async def submit_via(self, client: Any, attached_files: Optional[List[Any]] = None) -> Dict[str, Any]:
        """Send the payload through ``client.submit_proposal``.

        While the request is in flight every other operation, including a
        second ``submit_via``, raises ``DraftConsumedError``. On
        ``ExternalFetchError`` the error propagates and the draft stays open
        so the caller can retry.
        """
        payload = self.to_submission_payload()
        self._submitting = True
        try:
            response = await client.submit_proposal(payload, attached_files)
        finally:
            self._submitting = False
        self._submitted = True
        logger.info("Draft %s/%s accepted by backend", self.proposal_type.value, self.year)
        return response


def replay_document(
    doc: DraftDocument,
    *,
    requirements: Optional[List[MedalTierRequirement]] = None,
) -> Tuple[ProposalDraft, Dict[str, str]]:
    """Build a draft from a JSON document; returns it with per-entity rejections."""
    draft = ProposalDraft(doc.proposal_type, doc.year, context=doc.context(), requirements=requirements)
    rejections: Dict[str, str] = {}

    for item in doc.entities:
        entity: Union[PersonnelRecord, UnitRecord, str]
        if item.personnel is not None:
            entity = item.personnel
        elif item.unit is not None:
            entity = item.unit
        elif item.id:
            entity = item.id
        else:
            raise InvalidProposalError("draft entity needs an id, a personnel or a unit record")

        entry = draft.add_entity(
            entity,
            award_history=item.resolved_history(),
            position_history=item.position_history,
            annual_profile=item.annual_profile or item.unit_annual_profile,
        )
        if item.title is None and item.category is None:
            continue

        check = draft.assign_title(
            entry.entity_id,
            item.title,
            category=item.category,
            description=item.description,
        )
        if not check.allowed:
            rejections[entry.entity_id] = check.reason or "rejected"

    return draft, rejections
