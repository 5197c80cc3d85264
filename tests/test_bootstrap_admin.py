import pytest

from coursesphere.storage.memory import MemoryStore
from coursesphere.storage.models import Profile
from scripts.bootstrap_admin import promote_profile


@pytest.fixture
def store():
    store = MemoryStore()
    store.add_profile(Profile(id="u1", role="instructor"))
    store.add_profile(Profile(id="u2", role="admin"))
    return store


async def test_promotes_profile(store, capsys):
    result = await promote_profile(store, "u1", "admin")

    assert result["status"] == "promoted"
    assert result["previous_role"] == "instructor"
    assert (await store.get_profile("u1")).role == "admin"
    assert "from instructor to admin" in capsys.readouterr().out


async def test_dry_run_leaves_role(store):
    result = await promote_profile(store, "u1", "super_admin", dry_run=True)

    assert result["status"] == "dry_run"
    assert (await store.get_profile("u1")).role == "instructor"


async def test_already_assigned(store):
    result = await promote_profile(store, "u2", "admin")
    assert result["status"] == "already_assigned"


async def test_missing_profile(store):
    result = await promote_profile(store, "ghost", "admin")
    assert result["status"] == "missing"


async def test_rejects_non_privileged_role(store):
    with pytest.raises(ValueError):
        await promote_profile(store, "u1", "student")
    assert (await store.get_profile("u1")).role == "instructor"
