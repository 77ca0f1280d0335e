from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import requests
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..services.capabilities import (
    DownloadedImage,
    ImageAccessDeniedError,
    ImageAccessResult,
    ImageNotFoundError,
    ImageTooLargeError,
    SourceUnavailableError,
    TokenExpiredError,
    TokenProvider,
)

"""Image download and access checks against Google Drive or plain URLs."""

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30
VALIDATE_TIMEOUT_SECONDS = 10
USER_AGENT = "sheet-transfer/1.0"
DEFAULT_MIME_TYPE = "image/jpeg"


def _translate(error: HttpError, file_id: str) -> Exception:
    status = getattr(error.resp, "status", None)
    if status == 401:
        return TokenExpiredError("Drive access token expired or invalid")
    if status == 403:
        return ImageAccessDeniedError(f"Access denied to Drive file {file_id}")
    if status == 404:
        return ImageNotFoundError(f"Drive file not found: {file_id}")
    return SourceUnavailableError(f"Drive request for {file_id} failed: HTTP {status}")


def _filename_from_url(url: str) -> str:
    name = urlparse(url).path.rstrip("/").split("/")[-1]
    return name or "image.jpg"


class DriveImageSource:
    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        *,
        service: Any = None,
        session: requests.Session | None = None,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        validate_timeout: float = VALIDATE_TIMEOUT_SECONDS,
        max_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        if service is None and token_provider is not None:
            credentials = Credentials(token=token_provider.get_token())
            service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        self._service = service
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout
        self.validate_timeout = validate_timeout
        self.max_bytes = max_bytes

    def _drive(self) -> Any:
        if self._service is None:
            raise SourceUnavailableError("no Drive client configured for storage file downloads")
        return self._service

    # ------------------------------------------------------------------
    def download_image(self, image_url: str, source_id: str | None = None) -> DownloadedImage:
        if source_id:
            return self._download_drive_file(source_id)
        return self._download_url(image_url)

    def _download_drive_file(self, file_id: str) -> DownloadedImage:
        files = self._drive().files()
        try:
            meta = files.get(fileId=file_id, fields="name,mimeType,size").execute()
            size = int(meta.get("size") or 0)
            if size > self.max_bytes:
                raise ImageTooLargeError(f"Image file too large ({size} bytes, max {self.max_bytes})")
            content = files.get_media(fileId=file_id).execute()
        except HttpError as e:
            raise _translate(e, file_id) from e
        return DownloadedImage(
            content=content,
            mime_type=meta.get("mimeType") or DEFAULT_MIME_TYPE,
            filename=meta.get("name") or f"image_{file_id}.jpg",
        )

    def _download_url(self, image_url: str) -> DownloadedImage:
        try:
            with self._session.get(image_url, timeout=self.timeout, stream=True) as response:
                if response.status_code == 403:
                    raise ImageAccessDeniedError(f"Access denied to image URL {image_url}")
                if response.status_code == 404:
                    raise ImageNotFoundError(f"Image not found at URL {image_url}")
                response.raise_for_status()
                chunks: list[bytes] = []
                total = 0
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise ImageTooLargeError(f"Image at {image_url} exceeds {self.max_bytes} bytes")
                    chunks.append(chunk)
                mime_type = response.headers.get("Content-Type") or DEFAULT_MIME_TYPE
        except requests.RequestException as e:
            raise SourceUnavailableError(f"Image URL not accessible: {image_url}: {e}") from e
        return DownloadedImage(content=b"".join(chunks), mime_type=mime_type, filename=_filename_from_url(image_url))

    # ------------------------------------------------------------------
    def validate_image_access(self, image_url: str, source_id: str | None = None) -> ImageAccessResult:
        try:
            if source_id:
                self._drive().files().get(fileId=source_id, fields="id").execute()
            else:
                response = self._session.head(image_url, timeout=self.validate_timeout, allow_redirects=True)
                if response.status_code >= 400:
                    return ImageAccessResult(image_url, False, _status_message(response.status_code))
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            if status == 401:
                raise TokenExpiredError("Drive access token expired or invalid") from e
            return ImageAccessResult(image_url, False, _status_message(status))
        except requests.RequestException as e:
            logger.debug(f"HEAD {image_url} failed: {e}")
            return ImageAccessResult(image_url, False, "URL not accessible")
        return ImageAccessResult(image_url, True, None)


def _status_message(status: int | None) -> str:
    if status == 403:
        return "Access denied"
    if status == 404:
        return "File not found"
    return f"HTTP {status}"
