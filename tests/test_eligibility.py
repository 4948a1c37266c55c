"""Tests for medal-tier eligibility and the rule tables.

Reference date is 2026-10-19 throughout:
  - enlisted 2016-10-19 → exactly 10 years
  - enlisted 2016-11-19 → 9 years 11 months
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

import pytest

from khen_thuong.eligibility import (
    REASON_ALREADY_GRANTED,
    REASON_ANNUAL_PROFILE_REQUIRED,
    REASON_GENDER_NOT_SET,
    REASON_INSUFFICIENT_DURATION,
    REASON_INSUFFICIENT_YEARS,
    REASON_MISSING_ACHIEVEMENT,
    REASON_MISSING_ENLISTMENT,
    REASON_UNKNOWN_TIER,
    check_title,
    check_unit_title,
    consecutive_cstdcs_years,
    consecutive_unit_years,
    eligible_titles,
    is_eligible,
    months_in_coefficient_range,
    require_eligible,
)
from khen_thuong.exceptions import IneligibleTierError
from khen_thuong.models import (
    AnnualProfile,
    AwardHistory,
    AwardStatus,
    ComparisonMode,
    Gender,
    PersonnelRecord,
    PositionHistoryEntry,
    UnitAnnualProfile,
    UnitAnnualRecord,
)
from khen_thuong.rule_tables import (
    HANG_BA,
    HANG_NHAT,
    HANG_NHI,
    HC_QKQT,
    HCBVTQ,
    HCCSVV,
    KNC_VSNXD_QDNDVN,
    apply_rule_overrides,
    get_default_requirements,
    lookup_requirement,
    validate_requirement_table,
)

TODAY = date(2026, 10, 19)


# ── Fixtures ────────────────────────────────────────────────────────────────

def _make_personnel(
    enlisted: Optional[str] = "2016-10-19",
    gender: Optional[str] = "NAM",
    separated: Optional[str] = None,
) -> PersonnelRecord:
    return PersonnelRecord.model_validate({
        "id": 7,
        "ho_ten": "Nguyễn Văn A",
        "gioi_tinh": gender,
        "ngay_nhap_ngu": enlisted,
        "ngay_xuat_ngu": separated,
    })


def _make_history(*grants) -> AwardHistory:
    history = AwardHistory(personnel_id="7")
    for family, tier in grants:
        history = history.granted(family, tier)
    return history


def _make_positions(*pairs) -> List[PositionHistoryEntry]:
    return [PositionHistoryEntry(coefficient=c, months=m) for c, m in pairs]


# ── HCCSVV tier ladder ──────────────────────────────────────────────────────

class TestHCCSVV:
    def test_exact_ten_years_hang_ba_eligible(self):
        res = is_eligible(_make_personnel(), HCCSVV, HANG_BA, today=TODAY)
        assert res.eligible
        assert res.title_code == "HCCSVV_HANG_BA"
        assert res.actual_months == 120

    def test_exact_ten_years_hang_nhi_not_eligible(self):
        res = is_eligible(_make_personnel(), HCCSVV, HANG_NHI, today=TODAY)
        assert not res.eligible

    def test_nine_years_eleven_months_insufficient(self):
        res = is_eligible(_make_personnel("2016-11-19"), HCCSVV, HANG_BA, today=TODAY)
        assert not res.eligible
        assert REASON_INSUFFICIENT_DURATION in res.reason
        assert res.required_months == 120
        assert res.actual_months == 119

    def test_already_granted(self):
        history = _make_history((HCCSVV, HANG_BA))
        res = is_eligible(_make_personnel("1990-01-01"), HCCSVV, HANG_BA, history, today=TODAY)
        assert not res.eligible
        assert res.reason == REASON_ALREADY_GRANTED

    def test_missing_prerequisite_regardless_of_duration(self):
        history = _make_history((HCCSVV, HANG_BA))
        res = is_eligible(_make_personnel("1980-01-01"), HCCSVV, HANG_NHAT, history, today=TODAY)
        assert not res.eligible
        assert res.reason.startswith("missing prerequisite HCCSVV_HANG_NHI")

    def test_prerequisite_granted_and_duration_met(self):
        history = _make_history((HCCSVV, HANG_BA))
        res = is_eligible(_make_personnel("2011-10-19"), HCCSVV, HANG_NHI, history, today=TODAY)
        assert res.eligible

    def test_eligible_status_is_not_a_grant(self):
        history = AwardHistory.from_service_profile({"hccsvv_hang_ba_status": "DU_DIEU_KIEN"})
        res = is_eligible(_make_personnel("2000-01-01"), HCCSVV, HANG_NHI, history, today=TODAY)
        assert not res.eligible
        assert "missing prerequisite" in res.reason

    def test_separated_personnel_counts_until_separation(self):
        p = _make_personnel("2000-01-01", separated="2009-06-01")
        res = is_eligible(p, HCCSVV, HANG_BA, today=TODAY)
        assert not res.eligible
        assert res.actual_months == 113

    def test_separation_before_enlistment_reports_invalid_dates(self):
        p = _make_personnel("2010-01-01", separated="2005-01-01")
        res = is_eligible(p, HCCSVV, HANG_BA, today=TODAY)
        assert not res.eligible
        assert res.reason.startswith("invalid service dates")


class TestRejectionOrder:
    def test_unknown_tier(self):
        res = is_eligible(_make_personnel(), HCCSVV, "HANG_TU", today=TODAY)
        assert not res.eligible
        assert res.reason.startswith(REASON_UNKNOWN_TIER)
        assert res.title_code is None

    def test_missing_enlistment_date(self):
        res = is_eligible(_make_personnel(enlisted=None), HCCSVV, HANG_BA, today=TODAY)
        assert res.reason == REASON_MISSING_ENLISTMENT

    def test_granted_checked_before_missing_enlistment(self):
        history = _make_history((HCCSVV, HANG_BA))
        res = is_eligible(_make_personnel(enlisted=None), HCCSVV, HANG_BA, history, today=TODAY)
        assert res.reason == REASON_ALREADY_GRANTED


# ── Gender-gated and single-tier medals ─────────────────────────────────────

class TestKNCAndQKQT:
    def test_gender_not_set(self):
        res = is_eligible(_make_personnel("1990-01-01", gender="KHAC"), KNC_VSNXD_QDNDVN, KNC_VSNXD_QDNDVN,
                          today=TODAY)
        assert not res.eligible
        assert res.reason == REASON_GENDER_NOT_SET

    def test_female_twenty_years_eligible(self):
        res = is_eligible(_make_personnel("2006-10-19", gender="NỮ"), KNC_VSNXD_QDNDVN, KNC_VSNXD_QDNDVN,
                          today=TODAY)
        assert res.eligible
        assert res.required_months == 240

    def test_male_twenty_years_not_eligible(self):
        res = is_eligible(_make_personnel("2006-10-19", gender="NAM"), KNC_VSNXD_QDNDVN, KNC_VSNXD_QDNDVN,
                          today=TODAY)
        assert not res.eligible
        assert res.required_months == 300

    def test_qkqt_twenty_five_years(self):
        assert is_eligible(_make_personnel("2001-10-19"), HC_QKQT, HC_QKQT, today=TODAY).eligible
        assert not is_eligible(_make_personnel("2001-10-20"), HC_QKQT, HC_QKQT, today=TODAY).eligible


# ── HCBVTQ (position coefficient basis) ─────────────────────────────────────

class TestHCBVTQ:
    def setup_method(self):
        self.positions = _make_positions((0.9, 60), (0.8, 60), (0.5, 200))

    def test_months_in_coefficient_range(self):
        assert months_in_coefficient_range(self.positions, 0.7) == 120
        assert months_in_coefficient_range(self.positions, 0.9) == 60
        assert months_in_coefficient_range(_make_positions((0.9, None)), 0.7) == 0

    def test_higher_coefficient_counts_toward_lower_tiers(self):
        p = _make_personnel(enlisted=None)
        history = _make_history((HCBVTQ, HANG_BA))
        assert is_eligible(p, HCBVTQ, HANG_BA, position_history=self.positions, today=TODAY).eligible
        assert is_eligible(p, HCBVTQ, HANG_NHI, history, position_history=self.positions, today=TODAY).eligible

    def test_top_tier_needs_top_coefficient_months(self):
        history = _make_history((HCBVTQ, HANG_BA), (HCBVTQ, HANG_NHI))
        res = is_eligible(_make_personnel(), HCBVTQ, HANG_NHAT, history, position_history=self.positions,
                          today=TODAY)
        assert not res.eligible
        assert res.actual_months == 60

    def test_female_threshold_is_two_thirds(self):
        positions = _make_positions((0.9, 80))
        history = _make_history((HCBVTQ, HANG_BA), (HCBVTQ, HANG_NHI))
        res = is_eligible(_make_personnel(gender="NU"), HCBVTQ, HANG_NHAT, history, position_history=positions,
                          today=TODAY)
        assert res.eligible
        assert res.required_months == 80


class TestHCBVTQLadder:
    def setup_method(self):
        self.person = _make_personnel()
        self.positions = _make_positions((0.95, 130))

    def _check(self, tier: str, history: Optional[AwardHistory] = None):
        return is_eligible(self.person, HCBVTQ, tier, history, position_history=self.positions, today=TODAY)

    def test_top_tier_without_grants_denied(self):
        res = self._check(HANG_NHAT)
        assert not res.eligible
        assert "missing prerequisite HCBVTQ_HANG_NHI" in res.reason

    def test_second_tier_needs_first(self):
        assert not self._check(HANG_NHI).eligible
        assert self._check(HANG_NHI, _make_history((HCBVTQ, HANG_BA))).eligible

    def test_top_tier_needs_second_not_just_first(self):
        assert not self._check(HANG_NHAT, _make_history((HCBVTQ, HANG_BA))).eligible
        history = _make_history((HCBVTQ, HANG_BA), (HCBVTQ, HANG_NHI))
        assert self._check(HANG_NHAT, history).eligible

    def test_eligible_titles_follow_the_ladder(self):
        assert eligible_titles(self.person, HCBVTQ, position_history=self.positions) == ["HCBVTQ_HANG_BA"]
        history = _make_history((HCBVTQ, HANG_BA))
        assert eligible_titles(self.person, HCBVTQ, history, position_history=self.positions) == [
            "HCBVTQ_HANG_NHI",
        ]


# ── Annual titles (consecutive years) ───────────────────────────────────────

def _make_annual(titles, achievements=()) -> AnnualProfile:
    return AnnualProfile.model_validate({
        "quan_nhan_id": 7,
        "tong_cstdcs_json": [
            {"nam": year, "danh_hieu": title, "nhan_cstdtq": cstdtq}
            for year, title, cstdtq in titles
        ],
        "tong_nckh_json": [
            {"nam": year, "loai": "NCKH", "mo_ta": "Đề tài", "status": status}
            for year, status in achievements
        ],
    })


def _cstdcs_run(first: int, last: int, cstdtq_year: Optional[int] = None):
    return [(y, "CSTDCS", y == cstdtq_year) for y in range(first, last + 1)]


def _make_unit_profile(*year_counts) -> UnitAnnualProfile:
    return UnitAnnualProfile(
        unit_id="10",
        records=[UnitAnnualRecord.model_validate({"nam": y, "tong_so_quan_nhan": n}) for y, n in year_counts],
    )


class TestAnnualTitles:
    def setup_method(self):
        self.person = _make_personnel()

    def test_bkbqp_four_years_denied(self):
        res = check_title(self.person, "BKBQP", annual_profile=_make_annual(_cstdcs_run(2022, 2025)))
        assert not res.eligible
        assert REASON_INSUFFICIENT_YEARS in res.reason
        assert (res.required_years, res.actual_years) == (5, 4)

    def test_bkbqp_five_years_allowed(self):
        res = check_title(self.person, "BKBQP", annual_profile=_make_annual(_cstdcs_run(2021, 2025)))
        assert res.eligible
        assert res.actual_years == 5

    def test_missing_profile_denied(self):
        res = check_title(self.person, "BKBQP")
        assert not res.eligible
        assert res.reason == REASON_ANNUAL_PROFILE_REQUIRED

    def test_gap_and_other_titles_break_the_run(self):
        gap = _cstdcs_run(2015, 2019) + _cstdcs_run(2021, 2025)
        assert consecutive_cstdcs_years(_make_annual(gap).titles) == 5
        mixed = _cstdcs_run(2015, 2019) + [(2020, "CSTT", False)] + _cstdcs_run(2021, 2023)
        assert consecutive_cstdcs_years(_make_annual(mixed).titles) == 3

    def test_cstdtq_grant_restarts_run(self):
        titles = _cstdcs_run(2010, 2025, cstdtq_year=2017)
        assert consecutive_cstdcs_years(_make_annual(titles).titles) == 8
        res = check_title(self.person, "CSTDTQ", annual_profile=_make_annual(titles, [(2024, "APPROVED")]))
        assert not res.eligible
        assert res.actual_years == 8

    def test_cstdtq_after_earlier_grant_counts_new_run(self):
        titles = _cstdcs_run(2010, 2025, cstdtq_year=2015)
        res = check_title(self.person, "CSTDTQ", annual_profile=_make_annual(titles, [(2024, "APPROVED")]))
        assert res.eligible
        assert res.actual_years == 10

    def test_cstdtq_without_achievement_denied(self):
        titles = _cstdcs_run(2016, 2025)
        res = check_title(self.person, "CSTDTQ", annual_profile=_make_annual(titles))
        assert not res.eligible
        assert REASON_MISSING_ACHIEVEMENT in res.reason

        pending = _make_annual(titles, [(2025, "PENDING")])
        assert not check_title(self.person, "CSTDTQ", annual_profile=pending).eligible

    def test_year_bound_ignores_later_records(self):
        profile = _make_annual(_cstdcs_run(2021, 2025) + [(2026, "CSTT", False)])
        assert not check_title(self.person, "BKBQP", annual_profile=profile).eligible
        assert check_title(self.person, "BKBQP", annual_profile=profile, year=2025).eligible

    def test_null_flags_from_backend(self):
        profile = AnnualProfile.model_validate({
            "tong_cstdcs_json": [{"nam": 2025, "danh_hieu": "CSTDCS", "nhan_bkbqp": None, "nhan_cstdtq": None}],
            "tong_nckh_json": None,
        })
        assert profile.titles[0].received_cstdtq is False
        assert profile.achievements == []


class TestUnitAnnualTitles:
    def test_bkttcp_four_years_denied_five_allowed(self):
        four = _make_unit_profile((2023, 40), (2024, 41), (2025, 39), (2026, 42))
        res = check_unit_title("10", "BKTTCP", four)
        assert not res.eligible
        assert res.actual_years == 4

        five = _make_unit_profile((2022, 38), (2023, 40), (2024, 41), (2025, 39), (2026, 42))
        assert check_unit_title("10", "BKTTCP", five).eligible

    def test_empty_year_breaks_run(self):
        profile = _make_unit_profile((2022, 38), (2023, 0), (2024, 41), (2025, 39), (2026, 42))
        assert consecutive_unit_years(profile.records) == 3
        assert check_unit_title("10", "BKBQP", profile).eligible
        assert not check_unit_title("10", "BKTTCP", profile).eligible

    def test_titles_without_rule_pass(self):
        assert check_unit_title("10", "ĐVQT", None).eligible

    def test_missing_profile_denied(self):
        assert check_unit_title("10", "BKTTCP", None).reason == REASON_ANNUAL_PROFILE_REQUIRED


# ── Title-level helpers ─────────────────────────────────────────────────────

class TestTitleHelpers:
    def test_eligible_titles_without_grants(self):
        assert eligible_titles(_make_personnel(), HCCSVV, today=TODAY) == ["HCCSVV_HANG_BA"]

    def test_eligible_titles_after_first_tier(self):
        history = _make_history((HCCSVV, HANG_BA))
        titles = eligible_titles(_make_personnel("2010-01-01"), HCCSVV, history, today=TODAY)
        assert titles == ["HCCSVV_HANG_NHI"]

    def test_eligible_titles_unknown_family(self):
        assert eligible_titles(_make_personnel(), "NOPE", today=TODAY) == []

    def test_check_title_maps_to_tier(self):
        res = check_title(_make_personnel("2016-11-19"), "HCCSVV_HANG_BA", today=TODAY)
        assert not res.eligible

    def test_check_title_without_tier_rule_passes(self):
        assert check_title(_make_personnel(), "CSTDCS", today=TODAY).eligible

    def test_require_eligible_raises(self):
        with pytest.raises(IneligibleTierError) as exc:
            require_eligible(_make_personnel("2016-11-19"), HCCSVV, HANG_BA, today=TODAY)
        assert exc.value.title_code == "HCCSVV_HANG_BA"


# ── Records and rule tables ─────────────────────────────────────────────────

class TestRecords:
    def test_personnel_wire_aliases(self):
        p = PersonnelRecord.model_validate({
            "id": 3,
            "ho_ten": "Trần Thị B",
            "gioi_tinh": "NỮ",
            "ngay_nhap_ngu": "2010-03-01T00:00:00.000Z",
            "co_quan_don_vi_id": 12,
        })
        assert p.id == "3"
        assert p.gender == Gender.FEMALE
        assert p.enlistment_date == date(2010, 3, 1)
        assert p.agency_unit_id == "12"

    def test_service_profile_parsing(self):
        history = AwardHistory.from_service_profile({
            "quan_nhan_id": 5,
            "hccsvv_hang_ba_status": "DA_NHAN",
            "hccsvv_hang_ba_ngay": "2020-01-01",
            "hccsvv_hang_nhi_status": "DU_DIEU_KIEN",
            "hc_qkqt_status": "bogus",
        })
        assert history.personnel_id == "5"
        assert history.is_granted(HCCSVV, HANG_BA)
        assert history.entry_for(HCCSVV, HANG_BA).granted_on == date(2020, 1, 1)
        assert history.status_of(HCCSVV, HANG_NHI) == AwardStatus.ELIGIBLE
        assert history.status_of(HC_QKQT, HC_QKQT) == AwardStatus.NOT_ELIGIBLE
        assert history.status_of(HCBVTQ, HANG_BA) == AwardStatus.NOT_ELIGIBLE

    def test_qkqt_and_knc_grants_come_from_caller_history(self):
        history = AwardHistory.from_service_profile({
            "hc_qkqt_status": "DA_NHAN",
            "knc_vsnxd_qdndvn_status": "DA_NHAN",
        })
        assert history.entries == []

        granted = history.granted(HC_QKQT, HC_QKQT)
        res = is_eligible(_make_personnel("1990-01-01"), HC_QKQT, HC_QKQT, granted, today=TODAY)
        assert res.reason == REASON_ALREADY_GRANTED

    def test_empty_service_profile(self):
        assert AwardHistory.from_service_profile(None).entries == []


class TestRuleTables:
    def test_default_table_is_consistent(self):
        assert validate_requirement_table(get_default_requirements()) == []

    def test_hcbvtq_tiers_are_chained(self):
        table = get_default_requirements()
        assert lookup_requirement(table, HCBVTQ, HANG_NHI).prerequisite_tier_code == HANG_BA
        assert lookup_requirement(table, HCBVTQ, HANG_NHAT).prerequisite_tier_code == HANG_NHI

    def test_defaults_are_copies(self):
        table = get_default_requirements()
        table[0].min_months_of_service = 1
        assert get_default_requirements()[0].min_months_of_service == 120

    def test_override_switches_to_anniversary_year(self):
        table = apply_rule_overrides({"HCCSVV.HANG_BA": {"comparison": "ANNIVERSARY_YEAR"}})
        assert lookup_requirement(table, HCCSVV, HANG_BA).comparison == ComparisonMode.anniversary_year

        p = _make_personnel("2016-11-19")
        assert not is_eligible(p, HCCSVV, HANG_BA, today=TODAY).eligible
        assert is_eligible(p, HCCSVV, HANG_BA, today=TODAY, requirements=table).eligible

    def test_single_tier_override_key(self):
        table = apply_rule_overrides({"HC_QKQT": {"min_months_of_service": 240}})
        assert lookup_requirement(table, HC_QKQT, HC_QKQT).min_months_of_service == 240

    def test_unknown_override_ignored(self):
        table = apply_rule_overrides({"HCCSVV.HANG_TU": {"min_months_of_service": 1}})
        assert len(table) == len(get_default_requirements())

    def test_broken_order_is_reported(self):
        table = apply_rule_overrides({"HCCSVV.HANG_NHI": {"rank": 1}})
        problems = validate_requirement_table(table)
        assert any("duplicate tier ranks" in p for p in problems)
