"""PostgrestStore against a mocked PostgREST endpoint."""

import json

import httpx
import pytest

from coursesphere.service.errors import UpstreamError
from coursesphere.storage.common import ConstraintViolation
from coursesphere.storage.models import Profile
from coursesphere.storage.postgrest import PostgrestStore, _parse_content_range


class Recorder:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _store(recorder, **kwargs):
    return PostgrestStore(
        "https://db.example.supabase.co/",
        "service-key",
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


class TestReads:
    async def test_get_profile_queries_by_id(self):
        recorder = Recorder(
            httpx.Response(200, json=[{"id": "u1", "role": "admin", "bio": "hi"}])
        )
        store = _store(recorder)

        profile = await store.get_profile("u1")

        assert profile.id == "u1"
        assert profile.role == "admin"
        assert profile.attributes == {"bio": "hi"}
        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/users"
        assert request.url.params["id"] == "eq.u1"
        assert request.url.params["limit"] == "1"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"

    async def test_profile_table_is_configurable(self):
        recorder = Recorder(httpx.Response(200, json=[]))
        store = _store(recorder, profile_table="profiles")

        assert await store.get_profile("u1") is None
        assert recorder.requests[0].url.path == "/rest/v1/profiles"

    async def test_missing_course_is_none(self):
        store = _store(Recorder(httpx.Response(200, json=[])))
        assert await store.get_course("nope") is None

    async def test_get_lesson(self):
        store = _store(
            Recorder(
                httpx.Response(
                    200, json=[{"id": "l1", "course_id": "c1", "title": "One", "duration": 4}]
                )
            )
        )
        lesson = await store.get_lesson("l1")
        assert lesson.course_id == "c1"
        assert lesson.duration == 4


class TestWrites:
    async def test_update_course_filters_columns(self):
        recorder = Recorder(
            httpx.Response(200, json=[{"id": "c1", "title": "New", "instructor_id": "u1"}])
        )
        store = _store(recorder)

        course = await store.update_course("c1", {"title": "New", "instructor_id": "u2"})

        assert course.title == "New"
        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.headers["Prefer"] == "return=representation"
        assert json.loads(request.content) == {"title": "New"}

    async def test_update_with_no_allowed_fields_reads_instead(self):
        recorder = Recorder(httpx.Response(200, json=[{"id": "l1", "course_id": "c1"}]))
        store = _store(recorder)

        lesson = await store.update_lesson("l1", {"title": "ignored"})

        assert lesson.id == "l1"
        assert recorder.requests[0].method == "GET"

    async def test_delete_lesson_reports_whether_a_row_went(self):
        store = _store(
            Recorder(
                httpx.Response(200, json=[{"id": "l1", "course_id": "c1"}]),
                httpx.Response(200, json=[]),
            )
        )
        assert await store.delete_lesson("l1") is True
        assert await store.delete_lesson("l1") is False

    async def test_create_profile_posts_non_null_columns(self):
        recorder = Recorder(httpx.Response(201, json=[{"id": "u9", "role": "student"}]))
        store = _store(recorder)

        profile = await store.create_profile(Profile(id="u9", role="student", first_name="A"))

        assert profile.id == "u9"
        assert json.loads(recorder.requests[0].content) == {
            "id": "u9",
            "role": "student",
            "first_name": "A",
        }

    async def test_update_profile_role(self):
        recorder = Recorder(httpx.Response(200, json=[{"id": "u1", "role": "admin"}]))
        store = _store(recorder)

        profile = await store.update_profile_role("u1", "admin")

        assert profile.role == "admin"
        assert json.loads(recorder.requests[0].content) == {"role": "admin"}


class TestCount:
    async def test_count_reads_content_range(self):
        recorder = Recorder(httpx.Response(200, headers={"Content-Range": "0-24/311"}))
        store = _store(recorder)

        assert await store.count("courses") == 311
        request = recorder.requests[0]
        assert request.method == "HEAD"
        assert request.headers["Prefer"] == "count=exact"

    async def test_users_maps_to_profile_table(self):
        recorder = Recorder(httpx.Response(200, headers={"Content-Range": "*/7"}))
        store = _store(recorder, profile_table="profiles")

        assert await store.count("users") == 7
        assert recorder.requests[0].url.path == "/rest/v1/profiles"

    async def test_unknown_table_rejected_without_request(self):
        recorder = Recorder()
        with pytest.raises(ValueError):
            await _store(recorder).count("secrets")
        assert recorder.requests == []

    @pytest.mark.parametrize(
        "header,total", [(None, 0), ("*/0", 0), ("0-9/10", 10), ("0-9/*", 0)]
    )
    def test_parse_content_range(self, header, total):
        assert _parse_content_range(header) == total


class TestErrors:
    async def test_unique_violation_is_constraint_violation(self):
        store = _store(
            Recorder(
                httpx.Response(
                    409,
                    json={"code": "23505", "message": "duplicate key value violates unique constraint"},
                )
            )
        )
        with pytest.raises(ConstraintViolation) as excinfo:
            await store.create_profile(Profile(id="u1", role="student"))
        assert excinfo.value.detail["code"] == "23505"

    async def test_server_error_is_upstream_error(self):
        store = _store(Recorder(httpx.Response(500, json={"message": "boom"})))
        with pytest.raises(UpstreamError):
            await store.get_course("c1")

    async def test_transport_error_is_upstream_error(self):
        store = _store(Recorder(httpx.ConnectError("connection refused")))
        with pytest.raises(UpstreamError):
            await store.get_course("c1")

    async def test_invalid_json_is_upstream_error(self):
        store = _store(Recorder(httpx.Response(200, content=b"<html>")))
        with pytest.raises(UpstreamError):
            await store.get_course("c1")
