"""
Runtime configuration.

Reads `.env` (python-dotenv) and the process environment once, into an
immutable Settings object.  Clients for the two external services are built
from it at startup; a service without credentials gets the UNCONFIGURED
sentinel instead of a client, and the adapters check for it explicitly.
"""

import os
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv
from openai import AsyncOpenAI

DEFAULT_QUERY = "Top ranked universities globally"
QUICK_SEARCHES = ("Ivy League", "Top Engineering", "Affordable Public", "Europe Business")


class _Unconfigured:
    """Stands in for a client whose credentials are missing."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNCONFIGURED"


UNCONFIGURED: Any = _Unconfigured()


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_base_url: str | None = None
    content_model: str = "gpt-4o-mini"
    fallback_model: str | None = "gpt-4.1-mini"
    location_model: str = "gpt-4o-mini"
    web_search: bool = False
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_table: str = "universities"
    api_url: str = "http://localhost:8000"
    request_timeout: float = 30.0

    @property
    def content_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.environ.get
        return cls(
            openai_api_key=(env("OPENAI_API_KEY") or "").strip(),
            openai_base_url=(env("OPENAI_BASE_URL") or "").strip() or None,
            content_model=env("CONTENT_MODEL") or cls.content_model,
            fallback_model=env("CONTENT_FALLBACK_MODEL", cls.fallback_model) or None,
            location_model=env("LOCATION_MODEL") or cls.location_model,
            web_search=_flag(env("CONTENT_WEB_SEARCH")),
            supabase_url=(env("SUPABASE_URL") or "").strip().rstrip("/"),
            supabase_key=(env("SUPABASE_ANON_KEY") or "").strip(),
            supabase_table=env("SUPABASE_TABLE") or cls.supabase_table,
            api_url=(env("EXPLORER_API_URL") or cls.api_url).rstrip("/"),
            request_timeout=float(env("REQUEST_TIMEOUT") or cls.request_timeout),
        )


# ---------------------------------------------------------------------------
# Client construction (once, at startup)
# ---------------------------------------------------------------------------

def build_openai_client(settings: Settings) -> Any:
    if not settings.content_configured:
        return UNCONFIGURED
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout,
        max_retries=0,
    )


def supabase_headers(key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {key}", "apikey": key, "Content-Type": "application/json"}


def build_store_client(settings: Settings) -> Any:
    if not settings.store_configured:
        return UNCONFIGURED
    return httpx.AsyncClient(
        base_url=f"{settings.supabase_url}/rest/v1",
        headers=supabase_headers(settings.supabase_key),
        timeout=settings.request_timeout,
    )
