import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from medguard.core.config import settings
from medguard.schemas.logs import LogDetails, LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.errors import (
    IngestError,
    SourceAuthFailed,
    SourceSchemaMissing,
    SourceUnreachable,
)

logger = logging.getLogger(__name__)

_MISSING_TABLE_CODES = {"42P01", "PGRST205", "PGRST106"}


_TIMESTAMP = TypeAdapter(datetime)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str) and value.strip():
        # PostgREST trims trailing zeros from fractional seconds.
        try:
            return _as_utc(_TIMESTAMP.validate_python(value.strip()))
        except ValidationError:
            return None
    return None


def _ensure_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if value is None:
        return {}
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except ValueError:
            return {"message": text}
        if isinstance(parsed, dict):
            return parsed
        return {"message": text}
    return {"value": value}


def normalize_record(row: Any, system_id: int) -> Optional[LogRecord]:
    """
    Map one raw `system_logs` row into a LogRecord. Returns None for rows that
    miss the required id / event_type / timestamp columns.
    """
    if not isinstance(row, dict):
        return None
    record_id = row.get("id")
    event_type = str(row.get("event_type") or "").strip()
    ts = _parse_timestamp(row.get("created_at") or row.get("timestamp"))
    if record_id is None or str(record_id).strip() == "" or not event_type or ts is None:
        return None

    raw_details = _ensure_dict(row.get("details"))
    try:
        details = LogDetails.model_validate(raw_details)
    except ValidationError:
        details = LogDetails()

    user_id = row.get("user_id") or details.user_id
    return LogRecord(
        id=str(record_id),
        system_id=system_id,
        event_type=event_type,
        created_at=ts,
        details=details,
        raw_details=raw_details,
        user_id=str(user_id) if user_id is not None else None,
    )


class LogSourceAdapter:
    """
    Reads `system_logs` rows from an external PostgREST endpoint.

    One page per call and no retries; interpreting failures is left to the caller.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        log_table: Optional[str] = None,
        timeout: Optional[float] = None,
        max_limit: Optional[int] = None,
    ):
        self.log_table = log_table or settings.LOG_TABLE
        self.max_limit = max_limit or settings.MAX_FETCH_LIMIT
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.SOURCE_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _endpoint(self, url: str) -> str:
        base = url.strip().rstrip("/")
        if base.endswith("/rest/v1"):
            return f"{base}/{self.log_table}"
        return f"{base}/rest/v1/{self.log_table}"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }

    def _raise_for_response(self, response: httpx.Response, system_id: Optional[int]) -> None:
        if response.status_code < 400:
            return
        body = response.text or ""
        code = ""
        message = body
        try:
            payload = response.json()
            if isinstance(payload, dict):
                code = str(payload.get("code") or "")
                message = str(payload.get("message") or body)
        except ValueError:
            pass
        lowered = f"{message} {body}".lower()

        if response.status_code in (401, 403) or "jwt" in lowered:
            raise SourceAuthFailed(
                f"Credential rejected by source (HTTP {response.status_code}): {message}",
                system_id,
            )
        if (
            response.status_code == 404
            or code in _MISSING_TABLE_CODES
            or "does not exist" in lowered
            or "could not find the table" in lowered
        ):
            raise SourceSchemaMissing(
                f"Log table '{self.log_table}' is not available on source: {message}",
                system_id,
            )
        if response.status_code >= 500:
            raise SourceUnreachable(
                f"Source returned HTTP {response.status_code}: {message}",
                system_id,
            )
        raise SourceSchemaMissing(
            f"Source rejected the log query (HTTP {response.status_code}): {message}",
            system_id,
        )

    async def _get(
        self,
        url: str,
        api_key: str,
        params: Dict[str, Any],
        system_id: Optional[int],
    ) -> Any:
        try:
            response = await self.client.get(
                self._endpoint(url),
                params=params,
                headers=self._headers(api_key),
            )
        except httpx.TimeoutException as exc:
            raise SourceUnreachable(f"Timed out reaching source: {exc}", system_id) from exc
        except (httpx.TransportError, httpx.InvalidURL) as exc:
            raise SourceUnreachable(f"Unable to reach source: {exc}", system_id) from exc

        self._raise_for_response(response, system_id)
        try:
            return response.json()
        except ValueError as exc:
            raise SourceSchemaMissing("Source returned a non-JSON body", system_id) from exc

    async def probe(self, url: str, api_key: str, system_id: Optional[int] = None) -> None:
        """
        Check that the source is reachable, accepts the credential and exposes the log table.
        """
        payload = await self._get(url, api_key, {"select": "id", "limit": 1}, system_id)
        if not isinstance(payload, list):
            raise SourceSchemaMissing("Log table probe did not return rows", system_id)

    async def validate(self, system: ExternalSystemDescriptor) -> None:
        await self.probe(system.url, system.api_key, system.id)

    async def fetch(
        self,
        system: ExternalSystemDescriptor,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[LogRecord]:
        """
        Newest rows first. With `since`, only rows created strictly after it are read.
        """
        page_size = limit if limit is not None else settings.FETCH_PAGE_LIMIT
        page_size = max(1, min(int(page_size), self.max_limit))

        params: Dict[str, Any] = {"select": "*", "order": "created_at.desc", "limit": page_size}
        if since is not None:
            params["created_at"] = f"gt.{_as_utc(since).isoformat()}"

        await self.validate(system)
        payload = await self._get(system.url, system.api_key, params, system.id)
        if not isinstance(payload, list):
            raise SourceSchemaMissing("Log query did not return a list of rows", system.id)

        records: List[LogRecord] = []
        skipped_invalid = 0
        for row in payload[:page_size]:
            record = normalize_record(row, system.id)
            if record is None:
                skipped_invalid += 1
                continue
            records.append(record)

        if skipped_invalid:
            logger.debug(
                "log rows skipped",
                extra={"system_id": system.id, "reason": "invalid_row", "count": skipped_invalid},
            )
        logger.info(
            "logs fetched",
            extra={"system_id": system.id, "fetched": len(records), "limit": page_size},
        )
        return records


def describe_ingest_error(exc: IngestError) -> str:
    if isinstance(exc, SourceAuthFailed):
        return "Authentication failed. Verify the API key has read access to the log table."
    if isinstance(exc, SourceSchemaMissing):
        return "The log table does not exist on the external system or has an unexpected shape."
    if isinstance(exc, SourceUnreachable):
        return "Unable to reach the external system. Check the URL and that the project is online."
    return exc.message
