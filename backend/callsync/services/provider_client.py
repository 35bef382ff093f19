"""HighLevel voice-AI call log client.

Only one response shape is understood per API version. A payload that does not
match it raises ``ProviderSchemaError`` instead of probing for other keys, so a
provider contract change surfaces as a failed run rather than silently empty
syncs.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from callsync.core.config import Settings, settings as default_settings
from callsync.core.timeutil import isoformat_z
from callsync.errors import ProviderFetchError, ProviderSchemaError
from callsync.models import ProviderCredential

logger = logging.getLogger(__name__)

CALL_LOGS_PATH = "/voice-ai/dashboard/call-logs"


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def as_params(self) -> Dict[str, str]:
        return {"startDate": isoformat_z(self.start), "endDate": isoformat_z(self.end)}


@dataclass(frozen=True)
class ProviderSchema:
    version: str
    list_key: str
    id_field: str
    agent_field: str
    direction_field: str
    started_field: str
    duration_field: str
    cost_field: str
    status_field: str
    from_field: str
    to_field: str
    contact_field: str
    summary_field: str
    transcript_field: str
    recording_field: str
    tags_field: str
    agent_name_field: str
    message_field: str
    location_field: str
    ended_field: str
    test_call_field: str


SCHEMAS: Dict[str, ProviderSchema] = {
    "2021-07-28": ProviderSchema(
        version="2021-07-28",
        list_key="callLogs",
        id_field="id",
        agent_field="agentId",
        direction_field="direction",
        started_field="createdAt",
        duration_field="duration",
        cost_field="cost",
        status_field="status",
        from_field="fromNumber",
        to_field="toNumber",
        contact_field="contactName",
        summary_field="summary",
        transcript_field="transcript",
        recording_field="recordingUrl",
        tags_field="tags",
        agent_name_field="agentName",
        message_field="messageId",
        location_field="locationId",
        ended_field="endTime",
        test_call_field="isTestCall",
    ),
}


def get_schema(version: str) -> ProviderSchema:
    try:
        return SCHEMAS[version]
    except KeyError as exc:
        raise ProviderSchemaError(f"Unsupported provider API version {version!r}") from exc


DEFAULT_SCHEMA = get_schema(default_settings.provider_api_version)


class OffsetPagination:
    """``limit``/``skip`` paging; a full page implies there may be another one."""

    name = "offset"

    def __init__(self, page_size: int) -> None:
        self.page_size = page_size

    def params(self, page_token: Optional[str]) -> Dict[str, Any]:
        return {"limit": self.page_size, "skip": int(page_token or 0)}

    def next_token(
        self, payload: Dict[str, Any], records: List[Any], page_token: Optional[str]
    ) -> Optional[str]:
        if len(records) < self.page_size:
            return None
        return str(int(page_token or 0) + len(records))


class CursorPagination:
    """Opaque continuation token returned in ``cursor_field`` of each page."""

    name = "cursor"

    def __init__(self, page_size: int, cursor_field: str, cursor_param: str = "cursor") -> None:
        self.page_size = page_size
        self.cursor_field = cursor_field
        self.cursor_param = cursor_param

    def params(self, page_token: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.page_size}
        if page_token:
            params[self.cursor_param] = page_token
        return params

    def next_token(
        self, payload: Dict[str, Any], records: List[Any], page_token: Optional[str]
    ) -> Optional[str]:
        value = payload.get(self.cursor_field)
        if value in (None, ""):
            return None
        return str(value)


def build_pagination(config: Settings = default_settings):
    if config.provider_pagination == "cursor":
        return CursorPagination(config.provider_page_size, config.provider_cursor_field)
    return OffsetPagination(config.provider_page_size)


@dataclass
class CallPage:
    records: List[Any]
    next_page_token: Optional[str]
    duration_ms: int = 0


def parse_page(payload: Any, schema: ProviderSchema) -> List[Any]:
    if not isinstance(payload, dict):
        raise ProviderSchemaError(
            f"Expected a JSON object from call logs endpoint, got {type(payload).__name__}"
        )
    if schema.list_key not in payload:
        raise ProviderSchemaError(
            f"Call logs response missing {schema.list_key!r} "
            f"(keys: {sorted(payload.keys())[:10]})"
        )
    records = payload[schema.list_key]
    if records is None:
        return []
    if not isinstance(records, list):
        raise ProviderSchemaError(
            f"{schema.list_key!r} must be a list, got {type(records).__name__}"
        )
    return records


class HighLevelClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token_manager,
        *,
        base_url: str = default_settings.provider_base_url,
        api_version: str = default_settings.provider_api_version,
        pagination=None,
        schema: Optional[ProviderSchema] = None,
    ) -> None:
        self.http = http
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.pagination = pagination or build_pagination()
        self.schema = schema or get_schema(api_version)

    async def fetch_calls_page(
        self,
        credentials: ProviderCredential,
        date_range: DateRange,
        page_token: Optional[str] = None,
    ) -> CallPage:
        access_token = await self.token_manager.ensure_fresh(credentials)
        params: Dict[str, Any] = {}
        if credentials.location_id:
            params["locationId"] = credentials.location_id
        params.update(date_range.as_params())
        params.update(self.pagination.params(page_token))
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Version": self.api_version,
        }
        started = time.monotonic()
        try:
            response = await self.http.get(
                f"{self.base_url}{CALL_LOGS_PATH}", params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ProviderFetchError(f"Call logs request failed: {exc}") from exc
        duration_ms = int((time.monotonic() - started) * 1000)
        if response.status_code >= 400:
            raise ProviderFetchError(
                f"Call logs request returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderSchemaError("Call logs response is not valid JSON") from exc
        records = parse_page(payload, self.schema)
        next_token = self.pagination.next_token(payload, records, page_token)
        return CallPage(records=records, next_page_token=next_token, duration_ms=duration_ms)


@dataclass
class PageWalker:
    """Drives pagination for one run, bounded by ``max_pages``."""

    client: HighLevelClient
    credentials: ProviderCredential
    date_range: DateRange
    max_pages: int
    page_delay: float = 0.0
    account_id: Optional[int] = None
    pages_fetched: int = 0
    limit_reached: bool = False
    page_log: List[Dict[str, Any]] = field(default_factory=list)

    async def pages(self) -> AsyncIterator[CallPage]:
        page_token: Optional[str] = None
        while True:
            if self.pages_fetched >= self.max_pages:
                self.limit_reached = True
                logger.warning(
                    "Account %s: stopped after %s pages with more results pending",
                    self.account_id,
                    self.pages_fetched,
                )
                return
            if self.pages_fetched and self.page_delay:
                await asyncio.sleep(self.page_delay)
            page = await self.client.fetch_calls_page(
                self.credentials, self.date_range, page_token
            )
            self.pages_fetched += 1
            self.page_log.append(
                {
                    "page": self.pages_fetched,
                    "durationMs": page.duration_ms,
                    "recordCount": len(page.records),
                }
            )
            logger.info(
                "Account %s: fetched page %s (%s records, %sms)",
                self.account_id,
                self.pages_fetched,
                len(page.records),
                page.duration_ms,
                extra={
                    "account_id": self.account_id,
                    "page": self.pages_fetched,
                    "record_count": len(page.records),
                    "duration_ms": page.duration_ms,
                },
            )
            yield page
            if page.next_page_token is None:
                return
            page_token = page.next_page_token
