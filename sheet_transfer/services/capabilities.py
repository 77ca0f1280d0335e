from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..models.cells import RawCell
from ..models.job import JobStatus, TransferJob, TransferLog, TransferProgress

"""External capability contracts consumed by the transfer engine.

Source readers, image sources, destination writers and the job store are
injected; concrete adapters live under ``sheet_transfer.source``,
``sheet_transfer.destination`` and ``sheet_transfer.store``. Adapters translate
their transport failures into the exception classes below so the orchestrator
can tell fatal conditions (expired token, revoked access) apart from per-row or
per-image failures.
"""

__all__ = [
    "AccessRevokedError",
    "CapabilityError",
    "DestinationColumn",
    "DestinationError",
    "DestinationWriter",
    "DownloadedImage",
    "ImageAccessDeniedError",
    "ImageAccessResult",
    "ImageNotFoundError",
    "ImageSource",
    "ImageTooLargeError",
    "JobStore",
    "SourceReader",
    "SourceUnavailableError",
    "StaticTokenProvider",
    "TokenExpiredError",
    "TokenProvider",
]


class CapabilityError(Exception):
    """Base error raised by external capability adapters."""


class TokenExpiredError(CapabilityError):
    """Bearer credential is expired or invalid (fatal for the job)."""


class AccessRevokedError(CapabilityError):
    """Access to the source or destination was revoked (fatal for the job)."""


class SourceUnavailableError(CapabilityError):
    """Source spreadsheet or tab could not be read."""


class ImageAccessDeniedError(CapabilityError):
    pass


class ImageNotFoundError(CapabilityError):
    pass


class ImageTooLargeError(CapabilityError):
    pass


class DestinationError(CapabilityError):
    """Destination sheet call failed (non-credential failure)."""


@dataclass(frozen=True)
class DestinationColumn:
    column_id: Any
    title: str
    type: str = "TEXT_NUMBER"


@dataclass(frozen=True)
class DownloadedImage:
    content: bytes
    mime_type: str
    filename: str


@dataclass(frozen=True)
class ImageAccessResult:
    url: str
    accessible: bool
    error: str | None = None


class TokenProvider(Protocol):
    def get_token(self) -> str:
        """Return a valid bearer token or raise TokenExpiredError."""
        ...


class StaticTokenProvider:
    """Token provider for an already-refreshed token (e.g. from the environment)."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_token(self) -> str:
        if not self._token:
            raise TokenExpiredError("no access token configured")
        return self._token


class SourceReader(Protocol):
    def fetch_header_candidates(self, spreadsheet_id: str, tab: str, max_rows: int) -> list[list[Any]]:
        """First ``max_rows`` rows of a tab as formatted values."""
        ...

    def fetch_tab_data(self, spreadsheet_id: str, tab: str, start_row: int) -> list[list[RawCell]]:
        """Tab grid starting at 0-based ``start_row`` (the header row)."""
        ...


class ImageSource(Protocol):
    def download_image(self, image_url: str, source_id: str | None = None) -> DownloadedImage:
        ...

    def validate_image_access(self, image_url: str, source_id: str | None = None) -> ImageAccessResult:
        ...


class DestinationWriter(Protocol):
    def fetch_schema(self, sheet_id: Any) -> list[DestinationColumn]:
        ...

    def create_sheet(self, name: str, columns: Sequence[DestinationColumn]) -> Any:
        """Create a sheet with ``columns`` in order (the first one primary); return its id."""
        ...

    def insert_rows(self, sheet_id: Any, rows: Sequence[list[dict[str, Any]]]) -> list[Any]:
        """Insert rows all-or-nothing; return assigned row ids in submission order."""
        ...

    def attach_image_to_cell(
        self,
        sheet_id: Any,
        row_id: Any,
        column_id: Any,
        content: bytes,
        filename: str,
        mime_type: str,
    ) -> Any:
        ...

    def update_cell_as_hyperlink(self, sheet_id: Any, row_id: Any, column_id: Any, url: str) -> None:
        ...


class JobStore(Protocol):
    def create(self, job: TransferJob) -> TransferJob:
        ...

    def get(self, job_id: str) -> TransferJob | None:
        ...

    def save(self, job: TransferJob) -> None:
        """Persist job metadata (mappings, source info, estimates)."""
        ...

    def update_status(
        self, job_id: str, status: JobStatus, progress: TransferProgress | None = None
    ) -> None:
        ...

    def update_progress(self, job_id: str, progress: TransferProgress) -> None:
        ...

    def append_log(self, job_id: str, entry: TransferLog) -> None:
        ...
