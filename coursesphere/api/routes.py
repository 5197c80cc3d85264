from __future__ import annotations

import asyncio
from typing import Union

from fastapi import APIRouter, Depends, Path, Request, Response

from coursesphere.api.schemas import (
    CourseResponse,
    CourseUpdateRequest,
    DashboardResponse,
    Envelope,
    ExchangeResetCodeRequest,
    ForgotPasswordRequest,
    LessonResponse,
    LessonUpdateRequest,
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyUserRequest,
    VerifyUserResponse,
)
from coursesphere.logging import get_logger
from coursesphere.service.errors import ForbiddenError, NotFoundError, ValidationError
from coursesphere.service.runtime import Runtime, get_runtime
from coursesphere.service.session_store import CookieSessionStore
from coursesphere.storage.common import COUNTABLE_TABLES
from coursesphere.storage.models import Course, Lesson, Profile, Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


def get_session_store(request: Request, response: Response) -> CookieSessionStore:
    """Per-request cookie store; kept on request.state so error responses carry its cookies."""
    store = CookieSessionStore(request, response, get_runtime().settings)
    request.state.session_store = store
    return store


async def get_profile(
    session_store: CookieSessionStore = Depends(get_session_store),
) -> Profile:
    return await get_runtime().auth.get_profile(session_store)


def require_role(*roles: Union[Role, str]):
    """Dependency factory admitting only profiles whose role is in ``roles``."""
    allowed = tuple(roles)

    async def _require_role(
        session_store: CookieSessionStore = Depends(get_session_store),
    ) -> Profile:
        return await get_runtime().auth.require_role(allowed, session_store)

    return _require_role


def _refuse_missing(profile: Profile, kind: str) -> Exception:
    # Only super_admin may learn that a resource does not exist
    if profile.role == Role.SUPER_ADMIN.value:
        return NotFoundError(f"{kind} not found")
    return ForbiddenError("not the owner of this resource")


async def _load_owned_course(runtime: Runtime, course_id: str, profile: Profile) -> Course:
    course = await runtime.store.get_course(course_id)
    if course is None:
        raise _refuse_missing(profile, "course")
    runtime.auth.assert_ownership(profile, course)
    return course


async def _load_owned_lesson(runtime: Runtime, lesson_id: str, profile: Profile) -> Lesson:
    lesson = await runtime.store.get_lesson(lesson_id)
    if lesson is None:
        raise _refuse_missing(profile, "lesson")
    await _load_owned_course(runtime, lesson.course_id, profile)
    return lesson


def _profile_response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        role=profile.role,
        organization_id=profile.organization_id,
        email=profile.email,
        first_name=profile.first_name,
        last_name=profile.last_name,
        attributes=profile.attributes,
    )


def _course_response(course: Course) -> CourseResponse:
    return CourseResponse(
        id=course.id,
        title=course.title,
        instructor_id=course.instructor_id,
        organization_id=course.organization_id,
        is_active=course.is_active,
        attributes=course.attributes,
    )


def _lesson_response(lesson: Lesson) -> LessonResponse:
    return LessonResponse(
        id=lesson.id,
        course_id=lesson.course_id,
        title=lesson.title,
        video_url=lesson.video_url,
        duration=lesson.duration,
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest, session_store: CookieSessionStore = Depends(get_session_store)
):
    """Authenticate with email and password.

    Commits the session cookies and also returns the token triple so
    browser clients can keep their own copy.

    Raises:
        400: Missing fields or rejected credentials
    """
    runtime = get_runtime()
    result = await runtime.auth.login(body.email, body.password, session_store)
    data = result.unwrap()
    return Envelope(status="ok", data=LoginResponse(**data))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(session_store: CookieSessionStore = Depends(get_session_store)):
    runtime = get_runtime()
    (await runtime.auth.logout(session_store)).unwrap()
    return Envelope(status="ok", data={"message": "signed out"})


@router.post("/auth/verify-user", response_model=Envelope, tags=["auth"])
async def verify_user(
    body: VerifyUserRequest, session_store: CookieSessionStore = Depends(get_session_store)
):
    """Adopt a token triple obtained client-side as the current session."""
    runtime = get_runtime()
    committed = runtime.auth.verify(body.model_dump(), session_store)
    return Envelope(status="ok", data=VerifyUserResponse(**committed))


@router.post("/auth/forgot-password", response_model=Envelope, tags=["auth"])
async def forgot_password(
    body: ForgotPasswordRequest, session_store: CookieSessionStore = Depends(get_session_store)
):
    runtime = get_runtime()
    (await runtime.auth.forgot_password(body.email, session_store)).unwrap()
    return Envelope(
        status="ok",
        data={"message": "If an account exists for this email, a reset link has been sent."},
    )


@router.post("/auth/exchange-reset-code", response_model=Envelope, tags=["auth"])
async def exchange_reset_code(
    body: ExchangeResetCodeRequest,
    session_store: CookieSessionStore = Depends(get_session_store),
):
    runtime = get_runtime()
    data = (await runtime.auth.exchange_reset_code(body.code, session_store)).unwrap()
    return Envelope(status="ok", data=data)


@router.post("/auth/reset-password", response_model=Envelope, tags=["auth"])
async def reset_password(
    body: ResetPasswordRequest, session_store: CookieSessionStore = Depends(get_session_store)
):
    """Set a new password for the signed-in user.

    Reached after exchanging a reset code, which leaves a fresh session in
    place.
    """
    runtime = get_runtime()
    data = (await runtime.auth.reset_password(body.password, session_store)).unwrap()
    return Envelope(status="ok", data=data)


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    runtime = get_runtime()
    result = await runtime.auth.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    return Envelope(status="ok", data=result.unwrap())


@router.get("/me", response_model=Envelope, tags=["auth"])
async def get_current_profile(profile: Profile = Depends(get_profile)):
    return Envelope(status="ok", data=_profile_response(profile))


@router.get("/admin/courses/{course_id}", response_model=Envelope, tags=["admin"])
async def admin_get_course(
    course_id: str = Path(..., max_length=128),
    profile: Profile = Depends(require_role(*ADMIN_ROLES)),
):
    runtime = get_runtime()
    course = await _load_owned_course(runtime, course_id, profile)
    return Envelope(status="ok", data=_course_response(course))


@router.patch("/admin/courses/{course_id}", response_model=Envelope, tags=["admin"])
async def admin_update_course(
    body: CourseUpdateRequest,
    course_id: str = Path(..., max_length=128),
    profile: Profile = Depends(require_role(*ADMIN_ROLES)),
):
    """Update course fields; admins only on courses they instruct."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No valid fields to update.")
    runtime = get_runtime()
    await _load_owned_course(runtime, course_id, profile)
    updated = await runtime.store.update_course(course_id, updates)
    if updated is None:
        raise NotFoundError("course not found")
    logger.info(
        "course_updated",
        course_id=course_id,
        user_id=profile.id,
        fields=sorted(updates),
    )
    return Envelope(status="ok", data=_course_response(updated))


@router.patch("/admin/lessons/{lesson_id}", response_model=Envelope, tags=["admin"])
async def admin_update_lesson(
    body: LessonUpdateRequest,
    lesson_id: str = Path(..., max_length=128),
    profile: Profile = Depends(require_role(*ADMIN_ROLES)),
):
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No valid fields to update.")
    runtime = get_runtime()
    await _load_owned_lesson(runtime, lesson_id, profile)
    updated = await runtime.store.update_lesson(lesson_id, updates)
    if updated is None:
        raise NotFoundError("lesson not found")
    logger.info(
        "lesson_updated",
        lesson_id=lesson_id,
        user_id=profile.id,
        fields=sorted(updates),
    )
    return Envelope(status="ok", data=_lesson_response(updated))


@router.delete("/admin/lessons/{lesson_id}", response_model=Envelope, tags=["admin"])
async def admin_delete_lesson(
    lesson_id: str = Path(..., max_length=128),
    profile: Profile = Depends(require_role(*ADMIN_ROLES)),
):
    runtime = get_runtime()
    await _load_owned_lesson(runtime, lesson_id, profile)
    if not await runtime.store.delete_lesson(lesson_id):
        raise NotFoundError("lesson not found")
    logger.info("lesson_deleted", lesson_id=lesson_id, user_id=profile.id)
    return Envelope(status="ok", data={"deleted": True, "id": lesson_id})


@router.get("/super-admin/dashboard", response_model=Envelope, tags=["admin"])
async def super_admin_dashboard(profile: Profile = Depends(require_role(Role.SUPER_ADMIN))):
    """Platform-wide row counts."""
    runtime = get_runtime()
    counts = await asyncio.gather(*(runtime.store.count(table) for table in COUNTABLE_TABLES))
    data = DashboardResponse(
        **{f"{table}_count": total for table, total in zip(COUNTABLE_TABLES, counts)}
    )
    return Envelope(status="ok", data=data)
