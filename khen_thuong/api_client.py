"""Async client for the Quản lý Khen thưởng REST backend.

Every endpoint answers with an envelope ``{"success": bool, "data": ...,
"message": ...}``. Transport errors, timeouts, non-2xx statuses and
``success: false`` envelopes all surface as ``ExternalFetchError``; the
client never retries.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import aiohttp

from .exceptions import ExternalFetchError
from .models import (
    AnnualProfile,
    AwardHistory,
    PersonnelRecord,
    PositionHistoryEntry,
    ProposalType,
    SubmissionPayload,
    UnitAnnualProfile,
    UnitAnnualRecord,
    UnitRecord,
)

logger = logging.getLogger(__name__)

AttachedFile = Union[str, Path, Tuple[str, bytes]]


def _clean_params(params: Dict[str, Any]) -> Dict[str, str]:
    """Drop ``None`` values; aiohttp only accepts str/int/float query values."""
    cleaned: Dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned


def _as_list(data: Any) -> List[Dict[str, Any]]:
    # List endpoints return either a bare list or {"items": [...]} / {"personnel": [...]}.
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("items", "personnel", "units", "rows"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


class KhenThuongClient:
    """Thin async wrapper over the backend endpoints used by the proposal flow."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.token = token
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "KhenThuongClient":
        api_cfg = cfg.get("api", {}) or {}
        return cls(
            api_cfg.get("base_url", "http://localhost:4000"),
            timeout_seconds=float(api_cfg.get("timeout_seconds", 10)),
            token=api_cfg.get("token") or None,
        )

    async def __aenter__(self) -> "KhenThuongClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Any = None,
    ) -> Any:
        endpoint = f"{method} {path}"
        url = f"{self.base_url}{path}"
        logger.debug("%s params=%s", endpoint, params)

        try:
            async with self._get_session().request(
                method, url, params=_clean_params(params or {}), data=data
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                status = response.status
        except asyncio.TimeoutError as e:
            logger.warning("%s timed out", endpoint)
            raise ExternalFetchError(endpoint, "request timed out") from e
        except aiohttp.ClientError as e:
            logger.warning("%s failed: %s", endpoint, e)
            raise ExternalFetchError(endpoint, str(e) or e.__class__.__name__) from e

        envelope = body if isinstance(body, dict) else {}
        if status < 200 or status >= 300:
            message = envelope.get("message") or f"HTTP {status}"
            logger.warning("%s returned %s: %s", endpoint, status, message)
            raise ExternalFetchError(endpoint, message, status)
        if envelope.get("success") is False:
            message = envelope.get("message") or "request rejected"
            logger.warning("%s rejected: %s", endpoint, message)
            raise ExternalFetchError(endpoint, message, status)

        if "data" in envelope:
            return envelope["data"]
        return body

    # ── Personnel ───────────────────────────────────────────────────────
    async def get_personnel(
        self,
        *,
        search: Optional[str] = None,
        unit_id: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[PersonnelRecord]:
        data = await self._request(
            "GET",
            "/api/personnel",
            params={"search": search, "unit_id": unit_id, "page": page, "limit": limit},
        )
        return [PersonnelRecord.model_validate(item) for item in _as_list(data)]

    async def get_personnel_by_id(self, personnel_id: str) -> PersonnelRecord:
        data = await self._request("GET", f"/api/personnel/{personnel_id}")
        return PersonnelRecord.model_validate(data)

    async def get_service_profile(self, personnel_id: str) -> AwardHistory:
        data = await self._request("GET", f"/api/profiles/service/{personnel_id}")
        history = AwardHistory.from_service_profile(data)
        if history.personnel_id is None:
            history.personnel_id = str(personnel_id)
        return history

    async def get_annual_profile(self, personnel_id: str, *, year: Optional[int] = None) -> AnnualProfile:
        data = await self._request("GET", f"/api/profiles/annual/{personnel_id}", params={"year": year})
        profile = AnnualProfile.model_validate(data or {})
        if profile.personnel_id is None:
            profile.personnel_id = str(personnel_id)
        return profile

    async def get_position_history(self, personnel_id: str) -> List[PositionHistoryEntry]:
        data = await self._request("GET", f"/api/personnel/{personnel_id}/position-history")
        return [PositionHistoryEntry.model_validate(item) for item in _as_list(data)]

    # ── Units ───────────────────────────────────────────────────────────
    async def get_units(self, *, hierarchy: Optional[bool] = None) -> List[UnitRecord]:
        data = await self._request("GET", "/api/units", params={"hierarchy": hierarchy})
        return [UnitRecord.model_validate(item) for item in _as_list(data)]

    async def get_unit_by_id(self, unit_id: str) -> UnitRecord:
        data = await self._request("GET", f"/api/units/{unit_id}")
        return UnitRecord.model_validate(data)

    async def get_unit_annual_awards(self, unit_id: str) -> UnitAnnualProfile:
        """Yearly tracking records of one unit, used for consecutive-year titles."""
        data = await self._request("GET", "/api/awards/units/annual", params={"don_vi_id": unit_id})
        records = [UnitAnnualRecord.model_validate(item) for item in _as_list(data)]
        return UnitAnnualProfile(unit_id=str(unit_id), records=records)

    # ── Proposals ───────────────────────────────────────────────────────
    async def check_duplicate_award(
        self,
        personnel_id: str,
        year: int,
        title: str,
        proposal_type: ProposalType,
    ) -> Dict[str, Any]:
        """``{"exists": bool, "message": str}`` for a same-year, same-title proposal."""
        return await self._request(
            "GET",
            "/api/proposals/check-duplicate",
            params={
                "personnel_id": personnel_id,
                "nam": year,
                "danh_hieu": title,
                "proposal_type": ProposalType(proposal_type).value,
            },
        )

    async def check_duplicate_unit_award(
        self,
        unit_id: str,
        year: int,
        title: str,
        proposal_type: ProposalType = ProposalType.DON_VI_HANG_NAM,
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/api/proposals/check-duplicate-unit",
            params={
                "don_vi_id": unit_id,
                "nam": year,
                "danh_hieu": title,
                "proposal_type": ProposalType(proposal_type).value,
            },
        )

    async def submit_proposal(
        self,
        payload: SubmissionPayload,
        attached_files: Optional[Sequence[AttachedFile]] = None,
    ) -> Dict[str, Any]:
        form = aiohttp.FormData()
        for name, value in payload.to_form_fields().items():
            form.add_field(name, str(value))
        for item in attached_files or []:
            filename, content = _read_attachment(item)
            form.add_field("attached_files", content, filename=filename)

        logger.info(
            "Submitting %s/%s proposal (%d entities, %d files)",
            payload.proposal_type.value, payload.year, len(payload.entity_ids), len(attached_files or []),
        )
        return await self._request("POST", "/api/proposals", data=form)


def _read_attachment(item: AttachedFile) -> Tuple[str, bytes]:
    if isinstance(item, tuple):
        return item
    path = Path(item)
    return path.name, path.read_bytes()
