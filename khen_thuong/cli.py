"""
cli.py – Command-line access to the award rules.

Usage:
    python -m khen_thuong.cli duration 2015-03-01 --today 2026-10-19
    python -m khen_thuong.cli eligibility --input person.json --family HCCSVV
    python -m khen_thuong.cli draft --input draft.json --out payload.json
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config_loader import load_config, requirements_from_config
from .draft import ProposalDraft, replay_document
from .duration import compute_duration, duration_for, format_duration
from .eligibility import is_eligible
from .exceptions import KhenThuongError
from .logger_setup import setup_logging
from .models import (
    AwardHistory,
    DraftDocument,
    DraftState,
    EligibilityResult,
    MedalTierRequirement,
    PersonnelRecord,
    PositionHistoryEntry,
)
from .rule_tables import tiers_of

logger = logging.getLogger(__name__)


def _print_separator(title: str = ""):
    width = 72
    if title:
        pad = (width - len(title) - 4) // 2
        print(f"\n{'='*pad} [{title}] {'='*pad}")
    else:
        print("=" * width)


def _read_json(path: str) -> Any:
    input_path = Path(path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")
    with open(input_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _parse_today(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


# ── duration ────────────────────────────────────────────────────────────────
def _cmd_duration(args: argparse.Namespace, requirements: List[MedalTierRequirement]) -> int:
    result = compute_duration(args.start, args.end, today=_parse_today(args.today))
    _print_separator("SERVICE DURATION")
    print(f"  From         : {args.start}")
    print(f"  To           : {args.end or 'today'}")
    print(f"  Duration     : {format_duration(result)}")
    print(f"  Total months : {result.total_months}")
    _print_separator()
    return 0


# ── eligibility ─────────────────────────────────────────────────────────────
def _print_eligibility(personnel: PersonnelRecord, family: str, results: Dict[str, EligibilityResult], today):
    _print_separator("PERSONNEL")
    print(f"  ID           : {personnel.id}")
    print(f"  Name         : {personnel.full_name or '-'}")
    print(f"  Gender       : {personnel.gender.value if personnel.gender else '-'}")
    print(f"  Enlisted     : {personnel.enlistment_date or '-'}")
    if personnel.enlistment_date is not None:
        try:
            print(f"  Service      : {format_duration(duration_for(personnel, today))}")
        except KhenThuongError as e:
            print(f"  Service      : invalid ({e})")
    print()

    _print_separator(f"ELIGIBILITY {family}")
    for title, res in results.items():
        mark = "OK" if res.eligible else "--"
        line = f"  [{mark}] {title}"
        if res.reason:
            line += f": {res.reason}"
        print(line)
    _print_separator()


def _cmd_eligibility(args: argparse.Namespace, requirements: List[MedalTierRequirement]) -> int:
    raw = _read_json(args.input)
    personnel = PersonnelRecord.model_validate(raw.get("personnel", raw))
    if raw.get("award_history") is not None:
        history = AwardHistory.model_validate(raw["award_history"])
    else:
        history = AwardHistory.from_service_profile(raw.get("service_profile"))
    positions = [PositionHistoryEntry.model_validate(p) for p in raw.get("position_history", [])]
    today = _parse_today(args.today)

    tiers = [args.tier] if args.tier else [r.tier_code for r in tiers_of(requirements, args.family)]
    if not tiers:
        logger.error("Unknown medal family: %s", args.family)
        return 1

    results: Dict[str, EligibilityResult] = {}
    for tier in tiers:
        res = is_eligible(
            personnel, args.family, tier, history,
            today=today, position_history=positions, requirements=requirements,
        )
        results[res.title_code or f"{args.family}.{tier}"] = res

    _print_eligibility(personnel, args.family, results, today)
    return 0


# ── draft ───────────────────────────────────────────────────────────────────
def _print_draft(draft: ProposalDraft, rejections: Dict[str, str]):
    _print_separator("PROPOSAL DRAFT")
    print(f"  Type         : {draft.proposal_type.value}")
    print(f"  Year         : {draft.year}")
    print(f"  Entities     : {len(draft)} ({draft.entity_kind.value})")
    print(f"  State        : {draft.state.value}")
    print()

    _print_separator("TITLES")
    for eid in draft.entity_ids:
        entry = draft.entry(eid)
        value = entry.title or (entry.category.value if entry.category else None)
        print(f"  {eid}: {value or '(unassigned)'}")
    print()

    _print_separator("REJECTED ASSIGNMENTS")
    if rejections:
        for i, (eid, reason) in enumerate(rejections.items(), 1):
            print(f"  {i}. {eid}: {reason}")
    else:
        print("  None.")
    _print_separator()


def _cmd_draft(args: argparse.Namespace, requirements: List[MedalTierRequirement]) -> int:
    doc = DraftDocument.model_validate(_read_json(args.input))
    draft, rejections = replay_document(doc, requirements=requirements)
    _print_draft(draft, rejections)

    if draft.state != DraftState.COMPLETE:
        logger.warning("Draft incomplete; missing title data for %s", draft.missing())
        return 1

    payload = draft.to_submission_payload()
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(payload.to_form_fields(), f, ensure_ascii=False, indent=2)
        logger.info("Saved submission payload: %s", out_path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Quản lý Khen thưởng award eligibility and proposal rules"
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log rule decisions at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    p_dur = sub.add_parser("duration", help="Service duration between two dates")
    p_dur.add_argument("start", help="Start date (YYYY-MM-DD)")
    p_dur.add_argument("end", nargs="?", default=None, help="End date; today when omitted")
    p_dur.add_argument("--today", default=None, help="Override today's date")
    p_dur.set_defaults(handler=_cmd_duration)

    p_elig = sub.add_parser("eligibility", help="Medal-tier eligibility of one person")
    p_elig.add_argument("--input", "-i", required=True, help="Personnel JSON file")
    p_elig.add_argument("--family", "-f", required=True, help="Medal family, e.g. HCCSVV")
    p_elig.add_argument("--tier", "-t", default=None, help="Single tier; all tiers when omitted")
    p_elig.add_argument("--today", default=None, help="Override today's date")
    p_elig.set_defaults(handler=_cmd_eligibility)

    p_draft = sub.add_parser("draft", help="Replay a draft proposal document")
    p_draft.add_argument("--input", "-i", required=True, help="Draft JSON file")
    p_draft.add_argument("--out", "-o", default=None, help="Write the submission form fields here")
    p_draft.set_defaults(handler=_cmd_draft)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except FileNotFoundError as e:
        if args.config:
            logging.basicConfig(level=logging.INFO)
            logger.error("%s", e)
            return 1
        cfg = {}
    setup_logging(cfg, "DEBUG" if args.verbose else None)
    requirements = requirements_from_config(cfg)

    try:
        return args.handler(args, requirements)
    except (OSError, ValueError, KhenThuongError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
