"""
Content service adapter: generative search and enrichment over the OpenAI API.

Four one-shot operations, no session state:

    search(query)                        -> list[University]       (<= 5, raises on failure)
    get_details(name)                    -> UniversityDetails | None
    get_program_details(name, program)   -> ProgramDetails | None
    get_location_info(name, user_loc)    -> LocationInfo           (never raises)

Each request declares a JSON schema, but replies are still treated as
free text: they go through services.parsing, which strips fences and
rejects anything that is not the expected shape.

Model policy: a rate-limit on the primary model is final (the fallback model
shares the same quota).  Any other API failure gets exactly one retry on
the fallback model, if one is configured.
"""

import json
import logging
import time
from typing import Any
from urllib.parse import quote_plus

import openai
from pydantic import ValidationError

from catalog.config import UNCONFIGURED, Settings
from catalog.errors import (
    CatalogError,
    MissingCredential,
    ParseError,
    RateLimited,
    ServiceUnavailable,
)
from catalog.models import (
    GroundingSource,
    LocationInfo,
    Program,
    ProgramDetails,
    University,
    UniversityDetails,
    UserLocation,
)
from services.parsing import parse_array, parse_object

log = logging.getLogger(__name__)

MAX_RESULTS = 5
MAP_UNAVAILABLE = "Map information unavailable."
MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query="

SYSTEM_PROMPT = (
    "You are a knowledgeable university admissions researcher. "
    "Answer only with JSON that matches the requested schema. "
    "Do not wrap the JSON in markdown and do not add commentary."
)

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

_STR = {"type": "string"}
_STR_LIST = {"type": "array", "items": _STR}

UNIVERSITY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": _STR,
        "location": _STR,
        "country": _STR,
        "type": {"type": "string", "enum": ["Public", "Private"]},
        "classification": _STR,
        "description": _STR,
        "website": _STR,
    },
    "required": ["name", "location", "country", "type", "classification"],
}

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "universities": {"type": "array", "items": UNIVERSITY_SCHEMA, "maxItems": MAX_RESULTS},
    },
    "required": ["universities"],
}

PROGRAM_SCHEMA = {
    "type": "object",
    "properties": {
        "name": _STR,
        "degree": {"type": "string", "enum": ["Undergraduate", "Postgraduate", "Doctoral"]},
        "faculty": _STR,
        "duration": _STR,
        "tuitionEstimate": _STR,
    },
    "required": ["name", "degree", "faculty", "duration", "tuitionEstimate"],
}

DETAILS_SCHEMA = {
    "type": "object",
    "properties": {
        **UNIVERSITY_SCHEMA["properties"],
        "worldRanking": {"type": "number"},
        "programs": {"type": "array", "items": PROGRAM_SCHEMA},
    },
    "required": ["name", "description", "website", "classification", "programs"],
}

PROGRAM_DETAILS_SCHEMA = {
    "type": "object",
    "properties": {
        "overview": _STR,
        "curriculum": _STR_LIST,
        "careerProspects": _STR_LIST,
        "admissionRequirements": _STR_LIST,
    },
    "required": ["overview", "curriculum", "careerProspects", "admissionRequirements"],
}

LOCATION_SCHEMA = {
    "type": "object",
    "properties": {
        "address": _STR,
        "landmarks": _STR_LIST,
        "latitude": {"type": "number"},
        "longitude": {"type": "number"},
    },
    "required": ["address"],
}

ENRICHMENT_KEYS = ("overview", "curriculum", "careerProspects", "admissionRequirements")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def batch_ids(count: int, now_ms: int | None = None) -> list[str]:
    """Ephemeral ids: creation time + position, unique within one batch."""
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    return [f"{stamp}-{idx}" for idx in range(count)]


def extract_sources(message: Any) -> list[GroundingSource]:
    """Collect url citations attached to a (web-search grounded) reply."""
    sources: list[GroundingSource] = []
    seen: set[str] = set()
    for ann in getattr(message, "annotations", None) or []:
        citation = getattr(ann, "url_citation", None)
        uri = getattr(citation, "url", None)
        if not uri or uri in seen:
            continue
        seen.add(uri)
        sources.append(GroundingSource(title=getattr(citation, "title", None) or "Reference", uri=uri))
    return sources


def build_map_url(address: str | None, lat: Any = None, lng: Any = None) -> str | None:
    """Coordinates if present, else an address search, else nothing."""
    if isinstance(lat, (int, float)) and isinstance(lng, (int, float)) \
            and not isinstance(lat, bool) and not isinstance(lng, bool):
        return f"{MAPS_SEARCH_URL}{lat},{lng}"
    if address and address.strip():
        return MAPS_SEARCH_URL + quote_plus(address.strip())
    return None


def _format_location_text(data: dict[str, Any]) -> str:
    address = str(data.get("address") or "").strip()
    landmarks = [str(l).strip() for l in data.get("landmarks") or [] if str(l).strip()]
    if landmarks:
        return f"{address} Nearby: {', '.join(landmarks)}.".strip()
    return address or MAP_UNAVAILABLE


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class ContentService:
    def __init__(self, client: Any, settings: Settings):
        self._client = client
        self._settings = settings

    @property
    def configured(self) -> bool:
        return self._client is not UNCONFIGURED

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _models(self, primary: str) -> list[str]:
        fallback = self._settings.fallback_model
        if fallback and fallback != primary:
            return [primary, fallback]
        return [primary]

    async def _complete(
        self,
        operation: str,
        prompt: str,
        schema: dict[str, Any],
        model: str | None = None,
        web_search: bool = False,
    ) -> Any:
        """Send one request, with the single fallback-model retry. Returns the reply message."""
        if not self.configured:
            log.error("%s: OPENAI_API_KEY is missing", operation)
            raise MissingCredential("Content service API key is missing. Set OPENAI_API_KEY.")

        kwargs: dict[str, Any] = {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        if web_search:
            # Grounded requests cannot also carry a response_format; the schema goes in the prompt.
            kwargs["web_search_options"] = {}
            kwargs["messages"][1]["content"] = f"{prompt}\n\nJSON schema:\n{json.dumps(schema)}"
        else:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": operation, "schema": schema, "strict": False},
            }

        last_error: Exception | None = None
        for model in self._models(model or self._settings.content_model):
            t0 = time.perf_counter()
            try:
                response = await self._client.chat.completions.create(model=model, **kwargs)
            except openai.RateLimitError as exc:
                log.warning("%s: rate limited on %s", operation, model)
                raise RateLimited(
                    "The content service is rate limited. Please wait a moment and try again."
                ) from exc
            except openai.APIError as exc:
                last_error = exc
                log.warning("%s: %s failed (%s), %.2fs", operation, model, exc, time.perf_counter() - t0)
                continue

            log.info("%s: model=%s  %.2fs", operation, model, time.perf_counter() - t0)
            if not response.choices:
                raise ParseError("Content service returned no choices.")
            return response.choices[0].message

        raise ServiceUnavailable("The content service is unavailable. Please try again later.") from last_error

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def search(self, query: str) -> list[University]:
        """
        Up to MAX_RESULTS universities matching a free-text query.

        Raises ParseError when the reply is not a JSON array so that callers can
        tell "no matches" apart from a broken answer.
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty")

        prompt = (
            f'Search for universities based on the query: "{query.strip()}". '
            f"Return a JSON array of up to {MAX_RESULTS} universities with their name, location, "
            "country, type (Public/Private), a short classification category list "
            "(comma separated), a one-sentence description and the official website."
        )
        message = await self._complete("search", prompt, SEARCH_SCHEMA)
        items = parse_array(message.content, key="universities")

        valid: list[dict[str, Any]] = []
        for item in items:
            if isinstance(item, dict) and str(item.get("name") or "").strip():
                valid.append(item)
            else:
                log.warning("search: dropping malformed item %r", item)
            if len(valid) == MAX_RESULTS:
                break

        ids = batch_ids(len(valid))
        results = []
        for uid, item in zip(ids, valid):
            try:
                results.append(University.model_validate({**item, "id": uid}))
            except ValidationError as exc:
                log.warning("search: dropping invalid item %r: %s", item.get("name"), exc)
        log.info("search: query=%r  hits=%d", query, len(results))
        return results

    async def get_details(self, university_name: str) -> UniversityDetails | None:
        """Rich record for one university; None when the reply cannot be parsed."""
        prompt = (
            f'Provide deep insights for the university "{university_name}". Include its full '
            "description, website, world ranking (if available), and a list of 6-8 popular programs "
            "across different faculties with degree type, duration, and tuition estimate. Also include "
            'classification categories like "Ivy League", "Research Intensive", "Art-focused", etc.'
        )
        message = await self._complete("details", prompt, DETAILS_SCHEMA, web_search=self._settings.web_search)
        sources = extract_sources(message)
        try:
            data = parse_object(message.content)
            return UniversityDetails.model_validate(
                {"name": university_name, **data, "id": university_name, "sources": sources}
            )
        except (ParseError, ValidationError) as exc:
            log.warning("details: could not parse reply for %r: %s", university_name, exc)
            return None

    async def get_program_details(self, university_name: str, program: Program) -> ProgramDetails | None:
        """Enrich a programme summary; the summary fields are kept as-is."""
        prompt = (
            f'Analyze the "{program.name}" program at "{university_name}". Provide a detailed overview, '
            "5-6 core curriculum modules, 4-5 career prospects, and 3-4 standard admission requirements."
        )
        message = await self._complete("program", prompt, PROGRAM_DETAILS_SCHEMA)
        try:
            data = parse_object(message.content)
            enrichment = {k: data[k] for k in ENRICHMENT_KEYS if k in data}
            return ProgramDetails.model_validate({**program.model_dump(by_alias=True), **enrichment})
        except (ParseError, ValidationError) as exc:
            log.warning("program: could not parse reply for %r at %r: %s", program.name, university_name, exc)
            return None

    async def get_location_info(
        self,
        university_name: str,
        user_location: UserLocation | None = None,
    ) -> LocationInfo:
        """Short address plus a map link. Degrades to an 'unavailable' text, never raises."""
        prompt = (
            f"Where exactly is {university_name} located? Give me a brief address, mention nearby "
            "landmarks, and the latitude/longitude of the main campus."
        )
        if user_location is not None:
            prompt += (
                f" The user is currently near latitude {user_location.lat}, longitude {user_location.lng};"
                " mention the closest campus if there are several."
            )

        try:
            message = await self._complete(
                "location", prompt, LOCATION_SCHEMA, model=self._settings.location_model
            )
        except RateLimited:
            return LocationInfo(text=f"{MAP_UNAVAILABLE} The service is rate limited.", map_url=None)
        except CatalogError as exc:
            log.warning("location: %s", exc.message)
            return LocationInfo(text=MAP_UNAVAILABLE, map_url=None)

        try:
            data = parse_object(message.content)
        except ParseError:
            text = (message.content or "").strip()
            return LocationInfo(text=text or MAP_UNAVAILABLE, map_url=None)

        address = str(data.get("address") or "").strip()
        return LocationInfo(
            text=_format_location_text(data),
            map_url=build_map_url(address, data.get("latitude"), data.get("longitude")),
        )
