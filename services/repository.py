"""
Repository store adapter: saved universities in a hosted Supabase table.

Talks to the PostgREST endpoint (`<SUPABASE_URL>/rest/v1/<table>`) with an
httpx.AsyncClient built once at startup.  The table is keyed by `name`; the
surrogate `id` column is only used for display.

    is_configured()   credentials present (no network)
    list_all()        rows newest first          store errors -> []
    upsert(details)   insert-or-replace on name  store errors raise StoreError
    exists(name)      row present?               store errors / unconfigured -> False
    remove(name)      delete by name             unconfigured -> no-op

Column <-> field renaming lives in university_to_row / row_to_university and
nowhere else.  Provenance (`sources`) is written but not read back.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from catalog.config import UNCONFIGURED
from catalog.errors import StoreError
from catalog.models import UniversityDetails

log = logging.getLogger(__name__)

Row = dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def university_to_row(u: UniversityDetails, synced_at: datetime) -> Row:
    return {
        "name": u.name,
        "location": u.location,
        "country": u.country,
        "type": u.type.value,
        "classification": u.classification,
        "description": u.description,
        "website": u.website,
        "world_ranking": u.world_ranking,
        "programs": [p.model_dump(mode="json", by_alias=True) for p in u.programs],
        "sources": [s.model_dump(mode="json") for s in u.sources],
        "last_synced_at": synced_at.isoformat(),
    }


def row_to_university(row: Row) -> UniversityDetails:
    """Store row -> record. Absent arrays become [], sources are not restored."""
    return UniversityDetails.model_validate({
        "id": str(row.get("id", "")),
        "name": row.get("name"),
        "location": row.get("location"),
        "country": row.get("country"),
        "type": row.get("type"),
        "classification": row.get("classification"),
        "description": row.get("description"),
        "website": row.get("website"),
        "world_ranking": row.get("world_ranking"),
        "programs": row.get("programs") or [],
        "sources": [],
    })


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class RepositoryStore:
    def __init__(
        self,
        client: Any,
        table: str = "universities",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client
        self._table = table
        self._clock = clock

    def is_configured(self) -> bool:
        return self._client is not UNCONFIGURED

    async def aclose(self) -> None:
        if self.is_configured():
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, f"/{self._table}", params=params, json=json, headers=headers
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"Store rejected {method} ({exc.response.status_code}): {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"Store request failed: {exc}") from exc
        return resp

    async def list_all(self) -> list[UniversityDetails]:
        if not self.is_configured():
            return []
        try:
            resp = await self._request("GET", params={"select": "*", "order": "created_at.desc"})
            rows = resp.json() or []
        except (StoreError, ValueError) as exc:
            log.error("Supabase fetch error: %s", exc)
            return []

        universities = []
        for row in rows:
            try:
                universities.append(row_to_university(row))
            except ValidationError as exc:
                log.warning("Skipping unreadable row %r: %s", row.get("name"), exc)
        log.info("Repository: %d universities loaded", len(universities))
        return universities

    async def upsert(self, university: UniversityDetails) -> None:
        if not self.is_configured():
            raise StoreError("Supabase is not configured. University not saved.")
        row = university_to_row(university, self._clock())
        try:
            await self._request(
                "POST",
                params={"on_conflict": "name"},
                json=[row],
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
        except StoreError as exc:
            log.error("Supabase save error for %r: %s", university.name, exc.message)
            raise
        log.info("Repository: saved %r", university.name)

    async def exists(self, name: str) -> bool:
        if not self.is_configured():
            return False
        try:
            resp = await self._request(
                "GET", params={"select": "id", "name": f"eq.{name}", "limit": "1"}
            )
            return bool(resp.json())
        except (StoreError, ValueError) as exc:
            log.warning("Supabase lookup error for %r: %s", name, exc)
            return False

    async def remove(self, name: str) -> None:
        if not self.is_configured():
            return
        try:
            await self._request("DELETE", params={"name": f"eq.{name}"})
        except StoreError as exc:
            log.error("Supabase deletion error for %r: %s", name, exc.message)
            raise
        log.info("Repository: removed %r", name)
