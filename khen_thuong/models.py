"""Input/output data models for award eligibility and proposal assembly.

Field names follow the rules' vocabulary; the backend's Vietnamese wire
names (``ho_ten``, ``ngay_nhap_ngu``, ...) are accepted as aliases so API
documents validate directly.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def coerce_date(value: Any) -> Optional[date]:
    """Best-effort conversion of API date values; ``None`` when unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


class Gender(str, Enum):
    MALE = "NAM"
    FEMALE = "NU"


class AwardStatus(str, Enum):
    NOT_ELIGIBLE = "CHUA_DU"
    ELIGIBLE = "DU_DIEU_KIEN"
    GRANTED = "DA_NHAN"


class ProposalType(str, Enum):
    CA_NHAN_HANG_NAM = "CA_NHAN_HANG_NAM"
    DON_VI_HANG_NAM = "DON_VI_HANG_NAM"
    NIEN_HAN = "NIEN_HAN"
    CONG_HIEN = "CONG_HIEN"
    DOT_XUAT = "DOT_XUAT"
    NCKH = "NCKH"


class AchievementCategory(str, Enum):
    NCKH = "NCKH"
    SKKH = "SKKH"


class UnitKind(str, Enum):
    CO_QUAN_DON_VI = "CO_QUAN_DON_VI"
    DON_VI_TRUC_THUOC = "DON_VI_TRUC_THUOC"


class EntityKind(str, Enum):
    personnel = "personnel"
    unit = "unit"


class ComparisonMode(str, Enum):
    duration = "DURATION"
    anniversary_year = "ANNIVERSARY_YEAR"


class ServiceBasis(str, Enum):
    enlistment = "ENLISTMENT"
    position_coefficient = "POSITION_COEFFICIENT"


class DraftState(str, Enum):
    EMPTY = "EMPTY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    SUBMITTED = "SUBMITTED"


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


# ── Entities ────────────────────────────────────────────────────────────────
class PersonnelRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    full_name: str = Field(default="", validation_alias=AliasChoices("full_name", "ho_ten"))
    gender: Optional[Gender] = Field(default=None, validation_alias=AliasChoices("gender", "gioi_tinh"))
    enlistment_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("enlistment_date", "ngay_nhap_ngu")
    )
    separation_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("separation_date", "ngay_xuat_ngu")
    )
    position_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("position_id", "chuc_vu_id"))
    agency_unit_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("agency_unit_id", "co_quan_don_vi_id")
    )
    sub_unit_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("sub_unit_id", "don_vi_truc_thuoc_id")
    )

    @field_validator("id", "position_id", "agency_unit_id", "sub_unit_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, Gender):
            return value.value
        text = str(value).strip().upper()
        if text in ("NAM", "MALE"):
            return Gender.MALE.value
        if text in ("NU", "NỮ", "FEMALE"):
            return Gender.FEMALE.value
        # Anything else counts as unset; gender-gated rules fail closed on it.
        return None

    @field_validator("enlistment_date", "separation_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[date]:
        return coerce_date(value)


class UnitRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = Field(default="", validation_alias=AliasChoices("name", "ten_don_vi"))
    code: str = Field(default="", validation_alias=AliasChoices("code", "ma_don_vi"))
    parent_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("parent_id", "co_quan_don_vi_id"))

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def unit_kind(self) -> UnitKind:
        return UnitKind.DON_VI_TRUC_THUOC if self.parent_id else UnitKind.CO_QUAN_DON_VI


class PositionHistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    position_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("position_id", "chuc_vu_id"))
    coefficient: float = Field(default=0.0, validation_alias=AliasChoices("coefficient", "he_so_chuc_vu"))
    months: Optional[int] = Field(default=None, validation_alias=AliasChoices("months", "so_thang"))

    @field_validator("position_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("coefficient", mode="before")
    @classmethod
    def _coerce_coefficient(cls, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0


# ── Rule configuration ──────────────────────────────────────────────────────
class MedalTierRequirement(BaseModel):
    medal_family: str
    tier_code: str
    title_code: str
    rank: int = 1
    min_months_of_service: int
    prerequisite_tier_code: Optional[str] = None
    comparison: ComparisonMode = ComparisonMode.duration
    basis: ServiceBasis = ServiceBasis.enlistment
    female_min_months: Optional[int] = None
    gender_required: bool = False
    coefficient_floor: Optional[float] = None
    label: str = ""

    def threshold_for(self, gender: Optional[Gender]) -> int:
        if gender == Gender.FEMALE and self.female_min_months is not None:
            return self.female_min_months
        return self.min_months_of_service


class ConsecutiveYearsRequirement(BaseModel):
    """Annual title earned by an unbroken run of qualifying years.

    Personnel count consecutive CSTDCS years; units count consecutive years
    with a positive tracked headcount.
    """

    title_code: str
    entity_kind: EntityKind = EntityKind.personnel
    min_years: int
    requires_achievement: bool = False
    label: str = ""


class TitleFamily(BaseModel):
    family_id: str
    label: str
    titles: List[str]


# ── Derived values ──────────────────────────────────────────────────────────
class ServiceDuration(BaseModel):
    years: int = 0
    months: int = Field(default=0, ge=0, le=11)
    total_months: int = 0


class EligibilityResult(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    title_code: Optional[str] = None
    required_months: Optional[int] = None
    actual_months: Optional[int] = None
    required_years: Optional[int] = None
    actual_years: Optional[int] = None


class TitleCheck(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    conflicting_family: Optional[str] = None


# ── Award history ───────────────────────────────────────────────────────────
class AwardHistoryEntry(BaseModel):
    medal_family: str
    tier_code: str
    status: AwardStatus = AwardStatus.NOT_ELIGIBLE
    granted_on: Optional[date] = None

    @field_validator("granted_on", mode="before")
    @classmethod
    def _parse_granted_on(cls, value: Any) -> Optional[date]:
        return coerce_date(value)


# Service-profile document fields -> (family, tier). The profile only tracks
# HCCSVV and HCBVTQ; HC_QKQT and KNC grants have no profile field and come
# from the caller-supplied AwardHistory.
_PROFILE_STATUS_FIELDS: Dict[str, tuple] = {
    "hccsvv_hang_ba": ("HCCSVV", "HANG_BA"),
    "hccsvv_hang_nhi": ("HCCSVV", "HANG_NHI"),
    "hccsvv_hang_nhat": ("HCCSVV", "HANG_NHAT"),
    "hcbvtq_hang_ba": ("HCBVTQ", "HANG_BA"),
    "hcbvtq_hang_nhi": ("HCBVTQ", "HANG_NHI"),
    "hcbvtq_hang_nhat": ("HCBVTQ", "HANG_NHAT"),
}


class AwardHistory(BaseModel):
    personnel_id: Optional[str] = None
    entries: List[AwardHistoryEntry] = Field(default_factory=list)

    def entry_for(self, medal_family: str, tier_code: str) -> Optional[AwardHistoryEntry]:
        for entry in self.entries:
            if entry.medal_family == medal_family and entry.tier_code == tier_code:
                return entry
        return None

    def status_of(self, medal_family: str, tier_code: str) -> AwardStatus:
        entry = self.entry_for(medal_family, tier_code)
        return entry.status if entry else AwardStatus.NOT_ELIGIBLE

    def is_granted(self, medal_family: str, tier_code: str) -> bool:
        return self.status_of(medal_family, tier_code) == AwardStatus.GRANTED

    def granted(self, medal_family: str, tier_code: str, granted_on: Optional[date] = None) -> "AwardHistory":
        """Return a copy with the tier marked as granted."""
        entries = [
            e for e in self.entries
            if not (e.medal_family == medal_family and e.tier_code == tier_code)
        ]
        entries.append(AwardHistoryEntry(
            medal_family=medal_family,
            tier_code=tier_code,
            status=AwardStatus.GRANTED,
            granted_on=granted_on,
        ))
        return AwardHistory(personnel_id=self.personnel_id, entries=entries)

    @classmethod
    def from_service_profile(cls, profile: Optional[Dict[str, Any]]) -> "AwardHistory":
        """Parse the backend's service-profile document.

        The profile carries one ``<prefix>_status`` and one ``<prefix>_ngay``
        field per tier; unknown or missing statuses are read as not eligible.
        """
        if not profile:
            return cls()
        entries: List[AwardHistoryEntry] = []
        for prefix, (family, tier) in _PROFILE_STATUS_FIELDS.items():
            raw_status = profile.get(f"{prefix}_status")
            if raw_status is None:
                continue
            try:
                status = AwardStatus(raw_status)
            except ValueError:
                status = AwardStatus.NOT_ELIGIBLE
            entries.append(AwardHistoryEntry(
                medal_family=family,
                tier_code=tier,
                status=status,
                granted_on=profile.get(f"{prefix}_ngay"),
            ))
        pid = profile.get("quan_nhan_id", profile.get("personnel_id"))
        return cls(personnel_id=str(pid) if pid is not None else None, entries=entries)


# ── Annual title history ────────────────────────────────────────────────────
class AnnualTitleRecord(BaseModel):
    """One year of a person's annual titles (``tong_cstdcs_json`` item)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    year: int = Field(validation_alias=AliasChoices("year", "nam"))
    title: Optional[str] = Field(default=None, validation_alias=AliasChoices("title", "danh_hieu"))
    received_bkbqp: bool = Field(default=False, validation_alias=AliasChoices("received_bkbqp", "nhan_bkbqp"))
    received_cstdtq: bool = Field(default=False, validation_alias=AliasChoices("received_cstdtq", "nhan_cstdtq"))

    @field_validator("received_bkbqp", "received_cstdtq", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class AchievementRecord(BaseModel):
    """A scientific achievement (``tong_nckh_json`` item)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    year: int = Field(validation_alias=AliasChoices("year", "nam"))
    category: Optional[AchievementCategory] = Field(default=None, validation_alias=AliasChoices("category", "loai"))
    description: Optional[str] = Field(default=None, validation_alias=AliasChoices("description", "mo_ta"))
    status: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip().upper()
        return text if text in AchievementCategory.__members__ else None

    @property
    def approved(self) -> bool:
        # Profile entries without a status were already filtered server-side.
        return self.status is None or self.status == "APPROVED"


class AnnualProfile(BaseModel):
    """A person's annual-title profile (``GET /api/profiles/annual/{id}``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    personnel_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("personnel_id", "quan_nhan_id")
    )
    titles: List[AnnualTitleRecord] = Field(
        default_factory=list, validation_alias=AliasChoices("titles", "tong_cstdcs_json")
    )
    achievements: List[AchievementRecord] = Field(
        default_factory=list, validation_alias=AliasChoices("achievements", "tong_nckh_json")
    )

    @field_validator("personnel_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("titles", "achievements", mode="before")
    @classmethod
    def _decode_json_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value or "[]")
        return value

    def approved_achievements(self) -> List[AchievementRecord]:
        return [a for a in self.achievements if a.approved]


class UnitAnnualRecord(BaseModel):
    """One year of a unit's annual award tracking."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    year: int = Field(validation_alias=AliasChoices("year", "nam"))
    personnel_count: int = Field(default=0, validation_alias=AliasChoices("personnel_count", "tong_so_quan_nhan"))
    title: Optional[str] = Field(default=None, validation_alias=AliasChoices("title", "danh_hieu"))

    @field_validator("personnel_count", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class UnitAnnualProfile(BaseModel):
    """A unit's annual records (``GET /api/awards/units/annual``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    unit_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("unit_id", "don_vi_id"))
    records: List[UnitAnnualRecord] = Field(default_factory=list)

    @field_validator("unit_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


# ── Proposal context and payload ────────────────────────────────────────────
class ProposalContext(BaseModel):
    role: Role = Role.MANAGER
    today: date = Field(default_factory=date.today)


class TitleAssignment(BaseModel):
    """Per-entity title data as sent in ``title_data``."""

    entity_id: str
    entity_kind: EntityKind = EntityKind.personnel
    title: Optional[str] = None
    unit_kind: Optional[UnitKind] = None
    category: Optional[AchievementCategory] = None
    description: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        if self.entity_kind == EntityKind.unit:
            return {
                "don_vi_id": self.entity_id,
                "don_vi_type": (self.unit_kind or UnitKind.CO_QUAN_DON_VI).value,
                "danh_hieu": self.title,
            }
        if self.category is not None:
            return {
                "personnel_id": self.entity_id,
                "loai": self.category.value,
                "mo_ta": self.description,
            }
        return {"personnel_id": self.entity_id, "danh_hieu": self.title}


class SubmissionPayload(BaseModel):
    proposal_type: ProposalType
    year: int
    entity_kind: EntityKind
    entity_ids: List[str]
    title_data: List[TitleAssignment]

    def to_form_fields(self) -> Dict[str, Union[str, int]]:
        """Render the multipart fields accepted by ``POST /api/proposals``."""
        fields: Dict[str, Union[str, int]] = {
            "type": self.proposal_type.value,
            "nam": self.year,
            "title_data": json.dumps([t.to_wire() for t in self.title_data], ensure_ascii=False),
        }
        if self.entity_kind == EntityKind.personnel:
            fields["selected_personnel"] = json.dumps(self.entity_ids, ensure_ascii=False)
        return fields


# ── Draft documents (CLI / HTTP input) ──────────────────────────────────────
class DraftEntityInput(BaseModel):
    """One entity of a draft document, with optional title data to replay."""

    id: Optional[str] = None
    personnel: Optional[PersonnelRecord] = None
    unit: Optional[UnitRecord] = None
    award_history: Optional[AwardHistory] = None
    service_profile: Optional[Dict[str, Any]] = None
    position_history: List[PositionHistoryEntry] = Field(default_factory=list)
    annual_profile: Optional[AnnualProfile] = None
    unit_annual_profile: Optional[UnitAnnualProfile] = None
    title: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def resolved_history(self) -> Optional[AwardHistory]:
        if self.award_history is not None:
            return self.award_history
        if self.service_profile is not None:
            return AwardHistory.from_service_profile(self.service_profile)
        return None


class DraftDocument(BaseModel):
    proposal_type: ProposalType
    year: int
    role: Role = Role.MANAGER
    today: Optional[date] = None
    entities: List[DraftEntityInput] = Field(default_factory=list)

    def context(self) -> ProposalContext:
        if self.today is None:
            return ProposalContext(role=self.role)
        return ProposalContext(role=self.role, today=self.today)
