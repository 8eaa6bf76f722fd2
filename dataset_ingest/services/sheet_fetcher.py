from __future__ import annotations

import re

import httpx

from dataset_ingest.services.errors import FetchFailed, InvalidSheetUrl
from dataset_ingest.utils.config import SyncConfig, load_sync_config
from dataset_ingest.utils.logging import get_logger, log_event, log_warning

LOGGER = get_logger(__name__)

SHEET_ID_PATTERN = re.compile(r"/d/([a-zA-Z0-9-_]+)")


def extract_spreadsheet_id(share_url: str) -> str:
    match = SHEET_ID_PATTERN.search(share_url or "")
    if match is None:
        raise InvalidSheetUrl(f"Invalid Google Sheet URL: '{share_url}'.")
    return match.group(1)


def build_export_url(share_url: str, template: str | None = None) -> str:
    sheet_id = extract_spreadsheet_id(share_url)
    resolved = template or load_sync_config().export_url_template
    return resolved.format(sheet_id=sheet_id)


class SheetFetcher:
    """Fetch a shared spreadsheet as CSV bytes through its export endpoint.

    Every call performs one live GET. Non-2xx responses, timeouts and transport
    errors surface as ``FetchFailed``; retrying is left to the caller.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or load_sync_config()
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=self.config.fetch_timeout_seconds,
            follow_redirects=True,
        )

    def export_url(self, share_url: str) -> str:
        return build_export_url(share_url, self.config.export_url_template)

    def fetch_as_csv(self, share_url: str) -> bytes:
        url = self.export_url(share_url)
        try:
            response = self.client.get(url, timeout=self.config.fetch_timeout_seconds)
        except httpx.TimeoutException as error:
            log_warning(LOGGER, "sheet.fetch.timeout", url=url)
            raise FetchFailed(f"Timed out fetching sheet export: {url}") from error
        except httpx.HTTPError as error:
            log_warning(LOGGER, "sheet.fetch.transport_error", url=url, error=str(error))
            raise FetchFailed(f"Failed to fetch sheet export: {error}") from error

        if not response.is_success:
            log_warning(LOGGER, "sheet.fetch.bad_status", url=url, status=response.status_code)
            raise FetchFailed(
                f"Sheet export returned HTTP {response.status_code} for {url}."
            )

        log_event(LOGGER, "sheet.fetch.complete", url=url, size_bytes=len(response.content))
        return response.content

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "SheetFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
