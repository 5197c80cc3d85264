from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Platform roles, most privileged first."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ORG_EMPLOYEE = "org_employee"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


# Roles a user may pick for themselves at registration
SELF_SERVICE_ROLES = frozenset({Role.STUDENT.value, Role.INSTRUCTOR.value, Role.ORG_EMPLOYEE.value})


@dataclass(frozen=True)
class TokenTriple:
    access_token: str
    refresh_token: str
    expires_at: int
    user: Dict[str, Any] | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    expires_at: int
    user_id: str

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


_PROFILE_COLUMNS = ("id", "role", "organization_id", "email", "first_name", "last_name")


@dataclass
class Profile:
    """Application-level user record keyed by the session subject.

    ``role`` holds the raw stored value; it is compared as a plain string so
    unknown or empty roles never match an allow-set.
    """

    id: str
    role: Optional[str]
    organization_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        role = row.get("role")
        return cls(
            id=str(row["id"]),
            role=role if isinstance(role, str) else None,
            organization_id=row.get("organization_id"),
            email=row.get("email"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            attributes={k: v for k, v in row.items() if k not in _PROFILE_COLUMNS},
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            **self.attributes,
            "id": self.id,
            "role": self.role,
            "organization_id": self.organization_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


_COURSE_COLUMNS = ("id", "title", "instructor_id", "organization_id", "is_active")


@dataclass
class Course:
    id: str
    title: str
    instructor_id: Optional[str] = None
    organization_id: Optional[str] = None
    is_active: bool = True
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Course":
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            instructor_id=row.get("instructor_id"),
            organization_id=row.get("organization_id"),
            is_active=bool(row.get("is_active", True)),
            attributes={k: v for k, v in row.items() if k not in _COURSE_COLUMNS},
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            **self.attributes,
            "id": self.id,
            "title": self.title,
            "instructor_id": self.instructor_id,
            "organization_id": self.organization_id,
            "is_active": self.is_active,
        }


_LESSON_COLUMNS = ("id", "course_id", "title", "video_url", "duration")


@dataclass
class Lesson:
    id: str
    course_id: str
    title: str = ""
    video_url: Optional[str] = None
    duration: Optional[int] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Lesson":
        return cls(
            id=str(row["id"]),
            course_id=str(row["course_id"]),
            title=row.get("title") or "",
            video_url=row.get("video_url"),
            duration=row.get("duration"),
            attributes={k: v for k, v in row.items() if k not in _LESSON_COLUMNS},
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            **self.attributes,
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "video_url": self.video_url,
            "duration": self.duration,
        }
