from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Any, Dict, Optional

from coursesphere.logging import get_logger
from coursesphere.storage.common import (
    COURSE_MUTABLE_FIELDS,
    LESSON_MUTABLE_FIELDS,
    ConstraintViolation,
    filter_fields,
    require_countable,
)
from coursesphere.storage.models import Course, Lesson, Profile


def _detached(record):
    """Copy of a stored record; callers never share state with the store."""
    if record is None:
        return None
    return replace(record, attributes=dict(record.attributes))


class MemoryStore:
    """In-memory record store for tests and local development."""

    def __init__(self, *, profile_table: str = "users") -> None:
        self.logger = get_logger(__name__)
        self.profile_table = profile_table
        self.profiles: Dict[str, Profile] = {}
        self.courses: Dict[str, Course] = {}
        self.lessons: Dict[str, Lesson] = {}
        self.enrollments: Dict[str, Dict[str, Any]] = {}
        self.organizations: Dict[str, Dict[str, Any]] = {}
        self._data_lock = threading.RLock()

    # Seeding helpers (sync; used by tests and scripts)

    def add_profile(self, profile: Profile) -> Profile:
        with self._data_lock:
            self.profiles[profile.id] = profile
        return profile

    def add_course(self, course: Course) -> Course:
        with self._data_lock:
            self.courses[course.id] = course
        return course

    def add_lesson(self, lesson: Lesson) -> Lesson:
        with self._data_lock:
            self.lessons[lesson.id] = lesson
        return lesson

    def add_enrollment(self, course_id: str, user_id: str) -> str:
        enrollment_id = str(uuid.uuid4())
        with self._data_lock:
            self.enrollments[enrollment_id] = {"course_id": course_id, "user_id": user_id}
        return enrollment_id

    def add_organization(self, name: str) -> str:
        org_id = str(uuid.uuid4())
        with self._data_lock:
            self.organizations[org_id] = {"name": name}
        return org_id

    # RecordStore

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._data_lock:
            return _detached(self.profiles.get(user_id))

    async def create_profile(self, profile: Profile) -> Profile:
        with self._data_lock:
            if profile.id in self.profiles:
                raise ConstraintViolation("profile already exists", {"id": profile.id})
            if profile.email and any(
                existing.email == profile.email for existing in self.profiles.values()
            ):
                raise ConstraintViolation("email already registered", {"field": "email"})
            self.profiles[profile.id] = _detached(profile)
        self.logger.info("profile_created", user_id=profile.id, role=profile.role)
        return _detached(profile)

    async def update_profile_role(self, user_id: str, role: str) -> Optional[Profile]:
        with self._data_lock:
            profile = self.profiles.get(user_id)
            if profile is None:
                return None
            updated = replace(profile, role=role)
            self.profiles[user_id] = updated
            return _detached(updated)

    async def get_course(self, course_id: str) -> Optional[Course]:
        with self._data_lock:
            return _detached(self.courses.get(course_id))

    async def update_course(self, course_id: str, fields: Dict[str, Any]) -> Optional[Course]:
        updates = filter_fields(fields, COURSE_MUTABLE_FIELDS)
        with self._data_lock:
            course = self.courses.get(course_id)
            if course is None:
                return None
            updated = Course.from_row({**course.to_row(), **updates})
            self.courses[course_id] = updated
            return _detached(updated)

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self._data_lock:
            return _detached(self.lessons.get(lesson_id))

    async def update_lesson(self, lesson_id: str, fields: Dict[str, Any]) -> Optional[Lesson]:
        updates = filter_fields(fields, LESSON_MUTABLE_FIELDS)
        with self._data_lock:
            lesson = self.lessons.get(lesson_id)
            if lesson is None:
                return None
            updated = Lesson.from_row({**lesson.to_row(), **updates})
            self.lessons[lesson_id] = updated
            return _detached(updated)

    async def delete_lesson(self, lesson_id: str) -> bool:
        with self._data_lock:
            return self.lessons.pop(lesson_id, None) is not None

    async def count(self, table: str) -> int:
        require_countable(table)
        tables = {
            "courses": self.courses,
            "users": self.profiles,
            "enrollments": self.enrollments,
            "organizations": self.organizations,
            "lessons": self.lessons,
        }
        with self._data_lock:
            return len(tables[table])
