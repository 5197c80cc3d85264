"""Contract and shared rules for the record store backends.

Both :class:`~coursesphere.storage.memory.MemoryStore` and
:class:`~coursesphere.storage.postgrest.PostgrestStore` implement
:class:`RecordStore`; the helpers here keep their validation identical.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from coursesphere.storage.models import Course, Lesson, Profile


class ConstraintViolation(Exception):
    """Raised when a row would break a uniqueness or reference constraint."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


# Tables the super-admin dashboard may count
COUNTABLE_TABLES = ("courses", "users", "enrollments", "organizations", "lessons")

# Ownership columns (instructor_id, organization_id) are not editable here
COURSE_MUTABLE_FIELDS = frozenset(
    {
        "title",
        "subtitle",
        "description",
        "language",
        "level",
        "is_active",
        "thumbnail_url",
        "primary_category",
        "sub_category",
        "status",
        "is_free",
        "price",
        "requirements",
        "expectations",
    }
)

LESSON_MUTABLE_FIELDS = frozenset({"video_url", "duration"})


def filter_fields(fields: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    """Keep only whitelisted columns from an update payload."""
    return {key: value for key, value in fields.items() if key in allowed}


def require_countable(table: str) -> str:
    if table not in COUNTABLE_TABLES:
        raise ValueError(f"table '{table}' cannot be counted")
    return table


class RecordStore(Protocol):
    profile_table: str

    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def create_profile(self, profile: Profile) -> Profile: ...

    async def update_profile_role(self, user_id: str, role: str) -> Optional[Profile]: ...

    async def get_course(self, course_id: str) -> Optional[Course]: ...

    async def update_course(self, course_id: str, fields: Dict[str, Any]) -> Optional[Course]: ...

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...

    async def update_lesson(self, lesson_id: str, fields: Dict[str, Any]) -> Optional[Lesson]: ...

    async def delete_lesson(self, lesson_id: str) -> bool: ...

    async def count(self, table: str) -> int: ...


__all__ = [
    "ConstraintViolation",
    "COUNTABLE_TABLES",
    "COURSE_MUTABLE_FIELDS",
    "LESSON_MUTABLE_FIELDS",
    "RecordStore",
    "filter_fields",
    "require_countable",
]
