"""Error taxonomy for the award rules and the backend client.

Eligibility and title-family checks return result values; the exceptions
below cover caller misuse and transport failures.
"""

from __future__ import annotations

from typing import Optional


class KhenThuongError(Exception):
    """Base class for every error raised by this package."""


class InvalidDateRange(KhenThuongError, ValueError):
    """Missing/unparseable dates, or an end date before the start date."""


class IneligibleTierError(KhenThuongError):
    def __init__(self, title_code: str, reason: str) -> None:
        super().__init__(f"{title_code}: {reason}")
        self.title_code = title_code
        self.reason = reason


class TitleFamilyConflictError(KhenThuongError):
    def __init__(self, title: str, reason: str, conflicting_family: Optional[str] = None) -> None:
        super().__init__(reason)
        self.title = title
        self.reason = reason
        self.conflicting_family = conflicting_family


class IncompleteDraftError(KhenThuongError):
    """Submission attempted before every entity has its title data."""


class DraftConsumedError(IncompleteDraftError):
    """The draft was already submitted; it accepts no further operations."""


class EntityKindConflictError(KhenThuongError, ValueError):
    """Personnel and units mixed in one proposal."""


class InvalidProposalError(KhenThuongError, ValueError):
    """Proposal type/year/role combination rejected by policy."""


class ExternalFetchError(KhenThuongError):
    def __init__(self, endpoint: str, message: str, status: Optional[int] = None) -> None:
        detail = f"{endpoint}: {message}"
        if status is not None:
            detail = f"{endpoint} [{status}]: {message}"
        super().__init__(detail)
        self.endpoint = endpoint
        self.status = status
        self.message = message
