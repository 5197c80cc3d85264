from __future__ import annotations

import threading

from coursesphere.config import get_settings, reset_settings_cache
from coursesphere.logging import get_logger
from coursesphere.service.auth import AuthService
from coursesphere.service.identity import MemoryIdentityProvider, SupabaseIdentityProvider
from coursesphere.storage.memory import MemoryStore
from coursesphere.storage.postgrest import PostgrestStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
        )

        if self.settings.use_memory_store:
            self.store = MemoryStore(profile_table=self.settings.profile_table)
            self.identity = MemoryIdentityProvider()
        else:
            self.store = PostgrestStore(
                self.settings.supabase_url,
                self.settings.supabase_service_role_key or self.settings.supabase_anon_key,
                profile_table=self.settings.profile_table,
                timeout=self.settings.http_timeout_seconds,
            )
            self.identity = SupabaseIdentityProvider(
                self.settings.supabase_url,
                self.settings.supabase_anon_key,
                timeout=self.settings.http_timeout_seconds,
            )
            if not self.settings.supabase_service_role_key:
                logger.warning(
                    "record_store_using_anon_key",
                    message="SUPABASE_SERVICE_ROLE_KEY unset; row-level security applies to store calls",
                )
        logger.info(
            "runtime_backends_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgrest",
            identity_type=type(self.identity).__name__,
        )

        self.auth = AuthService(self.store, self.identity, self.settings)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton, re-reading settings from the environment."""
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
