"""
FastAPI server exposing the award rules.

Provides REST API endpoints for:
  - Service-duration calculation
  - Medal-tier and annual-title eligibility checks
  - Title-family compatibility checks
  - Draft proposal validation (replay + payload preview)
  - Health check

Config is read and logging configured when the app starts, not on import.

Usage:
  uvicorn khen_thuong.api:app --reload --port 8000
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config_loader import load_config, requirements_from_config
from .draft import replay_document
from .duration import compute_duration, format_duration
from .eligibility import check_title, eligible_titles, is_eligible
from .exceptions import EntityKindConflictError, InvalidDateRange, InvalidProposalError
from .logger_setup import setup_logging
from .models import (
    AnnualProfile,
    AwardHistory,
    DraftDocument,
    DraftState,
    EligibilityResult,
    MedalTierRequirement,
    PersonnelRecord,
    PositionHistoryEntry,
    ProposalType,
    TitleCheck,
)
from .title_groups import can_add_title

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = None
    try:
        cfg = load_config()
    except FileNotFoundError as e:
        missing, cfg = e, {}
    setup_logging(cfg)
    if missing is not None:
        logger.warning("%s; using built-in rule table", missing)
    app.state.requirements = requirements_from_config(cfg)
    logger.info("Rules API started with %d tier rules", len(app.state.requirements))
    yield


app = FastAPI(
    title="Khen Thuong Rules API",
    description="Award eligibility and proposal assembly rules",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _requirements(request: Request) -> Optional[List[MedalTierRequirement]]:
    # None falls back to the built-in table when the app was not started.
    return getattr(request.app.state, "requirements", None)


# ── Request bodies ──────────────────────────────────────────────────────────
class DurationRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    today: Optional[date] = None


class DurationResponse(BaseModel):
    years: int
    months: int
    total_months: int
    formatted: str


class EligibilityRequest(BaseModel):
    personnel: PersonnelRecord
    medal_family: str
    tier_code: Optional[str] = None
    award_history: Optional[AwardHistory] = None
    service_profile: Optional[Dict[str, Any]] = None
    position_history: List[PositionHistoryEntry] = Field(default_factory=list)
    today: Optional[date] = None

    def history(self) -> Optional[AwardHistory]:
        if self.award_history is not None:
            return self.award_history
        if self.service_profile is not None:
            return AwardHistory.from_service_profile(self.service_profile)
        return None


class TitleEligibilityRequest(BaseModel):
    personnel: PersonnelRecord
    title_code: str
    award_history: Optional[AwardHistory] = None
    position_history: List[PositionHistoryEntry] = Field(default_factory=list)
    annual_profile: Optional[AnnualProfile] = None
    year: Optional[int] = None
    today: Optional[date] = None


class TitleCheckRequest(BaseModel):
    current_titles: List[str] = Field(default_factory=list)
    candidate: str
    proposal_type: Optional[ProposalType] = None


# ── Error mapping ───────────────────────────────────────────────────────────
@app.exception_handler(InvalidDateRange)
@app.exception_handler(InvalidProposalError)
@app.exception_handler(EntityKindConflictError)
async def _unprocessable(request: Request, exc: Exception):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ── Endpoints ───────────────────────────────────────────────────────────────
@app.get("/health")
async def health():
    return {"status": "ok", "service": "khen-thuong-rules"}


@app.post("/api/duration", response_model=DurationResponse)
async def duration(body: DurationRequest):
    result = compute_duration(body.start_date, body.end_date, today=body.today)
    return DurationResponse(
        years=result.years,
        months=result.months,
        total_months=result.total_months,
        formatted=format_duration(result),
    )


@app.post("/api/eligibility", response_model=EligibilityResult)
async def eligibility(body: EligibilityRequest, request: Request):
    """Evaluate one medal tier (``tier_code`` defaults to the family code)."""
    return is_eligible(
        body.personnel,
        body.medal_family,
        body.tier_code or body.medal_family,
        body.history(),
        today=body.today,
        position_history=body.position_history,
        requirements=_requirements(request),
    )


@app.post("/api/eligibility/titles")
async def eligibility_titles(body: EligibilityRequest, request: Request):
    titles = eligible_titles(
        body.personnel,
        body.medal_family,
        body.history(),
        today=body.today,
        position_history=body.position_history,
        requirements=_requirements(request),
    )
    return {"personnel_id": body.personnel.id, "medal_family": body.medal_family, "titles": titles}


@app.post("/api/eligibility/title", response_model=EligibilityResult)
async def eligibility_title(body: TitleEligibilityRequest, request: Request):
    """Evaluate a proposal title code, medal tier or annual title."""
    return check_title(
        body.personnel,
        body.title_code,
        body.award_history,
        today=body.today,
        position_history=body.position_history,
        annual_profile=body.annual_profile,
        year=body.year,
        requirements=_requirements(request),
    )


@app.post("/api/titles/check", response_model=TitleCheck)
async def titles_check(body: TitleCheckRequest):
    return can_add_title(body.current_titles, body.candidate, body.proposal_type)


@app.post("/api/drafts/validate")
async def drafts_validate(doc: DraftDocument, request: Request):
    """Replay a draft document and preview the submission payload."""
    draft, rejections = replay_document(doc, requirements=_requirements(request))
    payload = None
    if draft.state == DraftState.COMPLETE:
        payload = draft.to_submission_payload()
    logger.info(
        "Validated %s draft: state=%s rejections=%d",
        doc.proposal_type.value, draft.state.value, len(rejections),
    )
    return {
        "state": draft.state.value,
        "entity_ids": draft.entity_ids,
        "missing": draft.missing(),
        "rejections": rejections,
        "payload": payload.model_dump(mode="json") if payload else None,
        "form_fields": payload.to_form_fields() if payload else None,
    }
