"""
View/selection state machine.

Owns the application state and sequences calls into the two adapters in
response to user intent.  States are Mode x View:

    Mode:  EXPLORER (live search results) | REPOSITORY (saved rows)
    View:  LIST -> UNIVERSITY -> PROGRAM          (derived from the selections)

with `loading` / `error` overlaid on any of them.

Concurrency model: one event loop, no workers.  Four slots carry their own
generation counter; every await is followed by a check that the generation it
started under is still current, and stale replies are dropped:

    primary    search / list_all / get_details / get_program_details  (gated by `loading`)
    detail     bumped whenever the selected university changes; guards the
               location lookup, the saved-status lookup and save/unsave
    location   newest location lookup wins
    save       bumped by save/unsave; a saved-status lookup that overlapped
               one is dropped

Snapshots are immutable; every transition replaces the whole AppState.
"""

import logging
from enum import Enum
from typing import Any

from pydantic import Field, computed_field

from catalog.config import DEFAULT_QUERY
from catalog.errors import MissingCredential, RateLimited
from catalog.models import (
    LocationInfo,
    Program,
    ProgramDetails,
    Record,
    University,
    UniversityDetails,
    UserLocation,
)

log = logging.getLogger(__name__)

SEARCH_FAILED = "Failed to fetch universities. Please try again."
REPOSITORY_FAILED = "Failed to load your repository."
STORE_NOT_CONFIGURED = (
    "Supabase backend is not configured. Please set SUPABASE_URL and SUPABASE_ANON_KEY."
)
DETAILS_MISSING = "Could not load details for this university."
DETAILS_FAILED = "An error occurred while loading details."
PROGRAM_MISSING = "Could not load program details."
PROGRAM_FAILED = "An error occurred while loading program details."

PRIMARY = "primary"
DETAIL = "detail"
LOCATION = "location"
SAVE = "save"

# kinds of primary fetch
LIST_FETCH = "list"
DETAILS_FETCH = "details"
PROGRAM_FETCH = "program"


class Mode(str, Enum):
    EXPLORER = "explorer"
    REPOSITORY = "repository"


class View(str, Enum):
    LIST = "list"
    UNIVERSITY = "university"
    PROGRAM = "program"


class AppState(Record):
    mode: Mode = Mode.EXPLORER
    universities: list[University] = Field(default_factory=list)
    selected_university: UniversityDetails | None = None
    selected_program: ProgramDetails | None = None
    loading: bool = False
    error: str | None = None

    # detail view panel
    location: LocationInfo | None = None
    loading_map: bool = False
    is_saved: bool = False
    is_saving: bool = False

    scroll_to_top: bool = False

    @computed_field
    @property
    def view(self) -> View:
        if self.selected_program is not None:
            return View.PROGRAM
        if self.selected_university is not None:
            return View.UNIVERSITY
        return View.LIST


_CLEAR_DETAIL: dict[str, Any] = {
    "selected_university": None,
    "selected_program": None,
    "location": None,
    "loading_map": False,
    "is_saved": False,
    "is_saving": False,
}


def _banner(exc: Exception, fallback: str) -> str:
    """Credential and quota problems say what is wrong; everything else gets the generic text."""
    if isinstance(exc, (MissingCredential, RateLimited)):
        return exc.message
    return fallback


class Explorer:
    """
    The state machine.  `content` and `store` are the two adapters (or fakes
    with the same coroutine methods); nothing here touches the network directly.
    """

    def __init__(self, content: Any, store: Any, default_query: str = DEFAULT_QUERY):
        self._content = content
        self._store = store
        self._default_query = default_query
        self._state = AppState()
        self._generation = {PRIMARY: 0, DETAIL: 0, LOCATION: 0, SAVE: 0}
        self._pending: str | None = None

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def content_configured(self) -> bool:
        return self._content.configured

    @property
    def store_configured(self) -> bool:
        return self._store.is_configured()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set(self, **changes: Any) -> None:
        changes.setdefault("scroll_to_top", False)
        self._state = self._state.model_copy(update=changes)

    def _advance(self, slot: str) -> int:
        self._generation[slot] += 1
        return self._generation[slot]

    def _stale(self, slot: str, token: int, what: str) -> bool:
        if self._generation[slot] != token:
            log.info("Dropping stale %s response (generation %d, now %d)", what, token, self._generation[slot])
            return True
        return False

    def _begin(self, kind: str) -> int:
        self._pending = kind
        return self._advance(PRIMARY)

    def _landed(self, token: int, what: str) -> bool:
        """True when the primary fetch started under `token` is still wanted."""
        if self._stale(PRIMARY, token, what):
            return False
        self._pending = None
        return True

    # ------------------------------------------------------------------
    # Mode / list
    # ------------------------------------------------------------------

    async def start(self) -> AppState:
        """Initial load for whatever mode the app opens in."""
        return await self.switch_mode(self._state.mode)

    async def switch_mode(self, mode: Mode) -> AppState:
        """
        Always allowed, even mid-fetch: any outstanding fetch is abandoned and
        the displayed list is cleared before the new one is requested.  This is
        the one exception to the `loading` gate; the abandoned fetch can no
        longer write once the primary generation moves on, so rows from the
        previous mode never show under the new one.
        """
        mode = Mode(mode)
        token = self._begin(LIST_FETCH)
        self._advance(DETAIL)
        self._set(mode=mode, universities=[], error=None, loading=True, **_CLEAR_DETAIL)
        log.info("Mode -> %s", mode.value)

        if mode is Mode.EXPLORER:
            await self._run_search(self._default_query, token)
        elif not self._store.is_configured():
            self._pending = None
            self._set(loading=False, error=STORE_NOT_CONFIGURED)
        else:
            await self._load_repository(token)
        return self._state

    async def submit_search(self, query: str) -> AppState:
        s = self._state
        if s.loading or s.mode is not Mode.EXPLORER or s.view is not View.LIST:
            log.debug("Ignoring search %r (loading=%s mode=%s view=%s)", query, s.loading, s.mode, s.view)
            return s
        if not query or not query.strip():
            return s

        token = self._begin(LIST_FETCH)
        self._set(loading=True, error=None)
        await self._run_search(query.strip(), token)
        return self._state

    async def _run_search(self, query: str, token: int) -> None:
        try:
            results = await self._content.search(query)
        except Exception as exc:
            if not self._landed(token, "search"):
                return
            log.error("Search failed for %r: %s", query, exc)
            self._set(universities=[], loading=False, error=_banner(exc, SEARCH_FAILED))
            return
        if not self._landed(token, "search"):
            return
        self._set(universities=list(results), loading=False, error=None)

    async def _load_repository(self, token: int) -> None:
        try:
            results = await self._store.list_all()
        except Exception as exc:
            if not self._landed(token, "repository"):
                return
            log.error("Repository load failed: %s", exc)
            self._set(universities=[], loading=False, error=REPOSITORY_FAILED)
            return
        if not self._landed(token, "repository"):
            return
        self._set(universities=list(results), loading=False, error=None)

    # ------------------------------------------------------------------
    # Drill-down
    # ------------------------------------------------------------------

    async def select_university(self, university: University) -> AppState:
        s = self._state
        if s.loading or s.view is not View.LIST:
            log.debug("Ignoring selection of %r", university.name)
            return s

        token = self._begin(DETAILS_FETCH)
        self._set(loading=True, error=None)
        try:
            details = await self._content.get_details(university.name)
        except Exception as exc:
            if not self._landed(token, "details"):
                return self._state
            log.error("Details failed for %r: %s", university.name, exc)
            self._set(loading=False, error=_banner(exc, DETAILS_FAILED))
            return self._state
        if not self._landed(token, "details"):
            return self._state
        if details is None:
            self._set(loading=False, error=DETAILS_MISSING)
            return self._state

        self._advance(DETAIL)
        self._set(**{
            **_CLEAR_DETAIL,
            "selected_university": details,
            "loading_map": True,
            "loading": False,
            "error": None,
            "scroll_to_top": True,
        })
        return self._state

    async def select_program(self, program: Program) -> AppState:
        s = self._state
        parent = s.selected_university
        if parent is None:
            return s
        if s.loading or s.view is not View.UNIVERSITY:
            log.debug("Ignoring program selection %r", program.name)
            return s

        token = self._begin(PROGRAM_FETCH)
        self._set(loading=True, error=None)
        try:
            details = await self._content.get_program_details(parent.name, program)
        except Exception as exc:
            if not self._landed(token, "program"):
                return self._state
            log.error("Program details failed for %r: %s", program.name, exc)
            self._set(loading=False, error=_banner(exc, PROGRAM_FAILED))
            return self._state
        if not self._landed(token, "program"):
            return self._state
        if details is None:
            self._set(loading=False, error=PROGRAM_MISSING)
            return self._state

        self._set(selected_program=details, loading=False, error=None, scroll_to_top=True)
        return self._state

    def back(self) -> AppState:
        """
        PROGRAM -> UNIVERSITY clears the programme only; UNIVERSITY -> LIST clears
        both.  An outstanding details or programme fetch is abandoned; a list
        fetch (search or repository load) is left to finish.  On the list view
        with nothing to abandon this is a no-op.
        """
        s = self._state
        abandoned = self._pending in (DETAILS_FETCH, PROGRAM_FETCH)
        if abandoned:
            log.info("Abandoning %s fetch", self._pending)
            self._advance(PRIMARY)
            self._pending = None
            self._set(loading=False)

        if s.selected_program is not None:
            self._set(selected_program=None)
        elif s.selected_university is not None:
            self._advance(DETAIL)
            self._set(**_CLEAR_DETAIL)
        elif not abandoned:
            return s
        return self._state

    # ------------------------------------------------------------------
    # Detail panel (independent flags, may overlap the primary slot)
    # ------------------------------------------------------------------

    async def load_location(self, user_location: UserLocation | None = None) -> AppState:
        university = self._state.selected_university
        if university is None:
            return self._state

        detail = self._generation[DETAIL]
        token = self._advance(LOCATION)
        self._set(loading_map=True)
        info = await self._content.get_location_info(university.name, user_location)
        if self._stale(DETAIL, detail, "location") or self._stale(LOCATION, token, "location"):
            return self._state
        self._set(location=info, loading_map=False)
        return self._state

    async def refresh_saved_status(self) -> AppState:
        university = self._state.selected_university
        if university is None:
            return self._state

        detail = self._generation[DETAIL]
        save = self._generation[SAVE]
        saved = await self._store.exists(university.name)
        if self._stale(DETAIL, detail, "saved-status") or self._stale(SAVE, save, "saved-status"):
            return self._state
        if self._state.is_saving:
            return self._state
        self._set(is_saved=saved)
        return self._state

    async def toggle_save(self) -> AppState:
        """
        Save or unsave the selected university.  A failure is logged and leaves
        `is_saved` as it was; it does not touch the global error banner.
        """
        s = self._state
        university = s.selected_university
        if university is None or s.is_saving:
            return s

        detail = self._generation[DETAIL]
        self._advance(SAVE)
        was_saved = s.is_saved
        self._set(is_saving=True)
        try:
            if was_saved:
                await self._store.remove(university.name)
            else:
                await self._store.upsert(university)
            saved = not was_saved
        except Exception as exc:
            log.error("Failed to update repository for %r: %s", university.name, exc)
            saved = was_saved

        if self._stale(DETAIL, detail, "save"):
            return self._state
        self._set(is_saving=False, is_saved=saved)
        return self._state
