from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from coursesphere.logging import get_logger, sanitize_error_message
from coursesphere.service.errors import UpstreamError
from coursesphere.storage.common import (
    COURSE_MUTABLE_FIELDS,
    LESSON_MUTABLE_FIELDS,
    ConstraintViolation,
    filter_fields,
    require_countable,
)
from coursesphere.storage.models import Course, Lesson, Profile

logger = get_logger(__name__)

# PostgreSQL unique_violation / foreign_key_violation
_CONSTRAINT_CODES = {"23505", "23503"}


def _parse_content_range(value: Optional[str]) -> int:
    """Total from a ``Content-Range: 0-24/311`` or ``*/0`` header."""
    if not value or "/" not in value:
        return 0
    total = value.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class PostgrestStore:
    """Record store backed by the Supabase REST (PostgREST) endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        profile_table: str = "users",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.profile_table = profile_table
        self.timeout = timeout
        self._transport = transport

    def _table(self, table: str) -> str:
        return self.profile_table if table == "users" else table

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method, url, params=params, json=payload, headers=self._headers(prefer)
                )
        except httpx.HTTPError as exc:
            logger.error(
                "record_store_transport_error",
                table=table,
                method=method,
                error_type=type(exc).__name__,
                error=sanitize_error_message(str(exc)),
            )
            raise UpstreamError("record store unreachable") from exc

        if response.status_code >= 400:
            body: Any = None
            try:
                body = response.json()
            except ValueError:
                body = None
            pg_code = body.get("code") if isinstance(body, dict) else None
            if response.status_code == 409 or pg_code in _CONSTRAINT_CODES:
                message = body.get("message") if isinstance(body, dict) else None
                raise ConstraintViolation(
                    message or "constraint violated", {"table": table, "code": pg_code}
                )
            logger.error(
                "record_store_error",
                table=table,
                method=method,
                status_code=response.status_code,
                pg_code=pg_code,
            )
            raise UpstreamError("record store request failed")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("record store returned invalid JSON") from exc
        if isinstance(body, dict):
            return [body]
        return [row for row in body if isinstance(row, dict)] if isinstance(body, list) else []

    async def _get_one(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        response = await self._send(
            "GET", table, params={"id": f"eq.{row_id}", "select": "*", "limit": "1"}
        )
        rows = self._rows(response)
        return rows[0] if rows else None

    async def _patch_one(
        self, table: str, row_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        response = await self._send(
            "PATCH",
            table,
            params={"id": f"eq.{row_id}"},
            payload=updates,
            prefer="return=representation",
        )
        rows = self._rows(response)
        return rows[0] if rows else None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self._get_one(self.profile_table, user_id)
        return Profile.from_row(row) if row else None

    async def create_profile(self, profile: Profile) -> Profile:
        row = {key: value for key, value in profile.to_row().items() if value is not None}
        response = await self._send(
            "POST", self.profile_table, payload=row, prefer="return=representation"
        )
        rows = self._rows(response)
        logger.info("profile_created", user_id=profile.id, role=profile.role)
        return Profile.from_row(rows[0]) if rows else profile

    async def update_profile_role(self, user_id: str, role: str) -> Optional[Profile]:
        row = await self._patch_one(self.profile_table, user_id, {"role": role})
        return Profile.from_row(row) if row else None

    async def get_course(self, course_id: str) -> Optional[Course]:
        row = await self._get_one("courses", course_id)
        return Course.from_row(row) if row else None

    async def update_course(self, course_id: str, fields: Dict[str, Any]) -> Optional[Course]:
        updates = filter_fields(fields, COURSE_MUTABLE_FIELDS)
        if not updates:
            return await self.get_course(course_id)
        row = await self._patch_one("courses", course_id, updates)
        return Course.from_row(row) if row else None

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        row = await self._get_one("lessons", lesson_id)
        return Lesson.from_row(row) if row else None

    async def update_lesson(self, lesson_id: str, fields: Dict[str, Any]) -> Optional[Lesson]:
        updates = filter_fields(fields, LESSON_MUTABLE_FIELDS)
        if not updates:
            return await self.get_lesson(lesson_id)
        row = await self._patch_one("lessons", lesson_id, updates)
        return Lesson.from_row(row) if row else None

    async def delete_lesson(self, lesson_id: str) -> bool:
        response = await self._send(
            "DELETE",
            "lessons",
            params={"id": f"eq.{lesson_id}"},
            prefer="return=representation",
        )
        return bool(self._rows(response))

    async def count(self, table: str) -> int:
        require_countable(table)
        response = await self._send(
            "HEAD", self._table(table), params={"select": "id"}, prefer="count=exact"
        )
        return _parse_content_range(response.headers.get("content-range"))
