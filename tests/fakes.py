"""
In-memory stand-ins for the external services, shared by the test modules.

    FakeOpenAI      replays canned chat-completion replies / exceptions
    FakePostgrest   minimal PostgREST table behind httpx.MockTransport
    FakeContent     content adapter double with per-name gates (asyncio.Event)
    FakeStore       repository adapter double
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import openai

from catalog.errors import StoreError
from catalog.models import LocationInfo, ProgramDetails, UniversityDetails

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
SUPABASE_BASE = "https://project.supabase.co/rest/v1"


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

def message(content, citations=()):
    annotations = [
        SimpleNamespace(type="url_citation", url_citation=SimpleNamespace(title=title, url=url))
        for title, url in citations
    ]
    return SimpleNamespace(content=content, annotations=annotations)


def rate_limit_error():
    request = httpx.Request("POST", OPENAI_URL)
    return openai.RateLimitError("Rate limit reached", response=httpx.Response(429, request=request), body=None)


def server_error():
    request = httpx.Request("POST", OPENAI_URL)
    return openai.InternalServerError("Upstream failure", response=httpx.Response(500, request=request), body=None)


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", OPENAI_URL))


class _Completions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if reply is None or isinstance(reply, str):
            reply = message(reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=reply)])


class FakeOpenAI:
    def __init__(self, *replies):
        self.chat = SimpleNamespace(completions=_Completions(replies))

    @property
    def calls(self):
        return self.chat.completions.calls

    @property
    def models(self):
        return [c["model"] for c in self.calls]


# ---------------------------------------------------------------------------
# Supabase / PostgREST
# ---------------------------------------------------------------------------

class FakePostgrest:
    def __init__(self, table="universities"):
        self.table = table
        self.rows = []
        self.fail_with = None
        self.requests = []
        self._next_id = 1

    def _name_filter(self, params):
        value = params.get("name")
        return value[len("eq."):] if value and value.startswith("eq.") else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.url.path.endswith(f"/{self.table}")
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "store failure"})

        params = request.url.params
        name = self._name_filter(params)

        if request.method == "GET":
            rows = [r for r in self.rows if name is None or r["name"] == name]
            if params.get("order") == "created_at.desc":
                rows = sorted(rows, key=lambda r: r["created_at"], reverse=True)
            if "limit" in params:
                rows = rows[: int(params["limit"])]
            select = params.get("select", "*")
            if select != "*":
                rows = [{k: r[k] for k in select.split(",")} for r in rows]
            return httpx.Response(200, json=rows)

        if request.method == "POST":
            assert params.get("on_conflict") == "name"
            for row in json.loads(request.content):
                existing = next((r for r in self.rows if r["name"] == row["name"]), None)
                if existing is not None:
                    existing.update(row)
                else:
                    self.rows.append({
                        "id": self._next_id,
                        "created_at": f"2026-01-01T00:00:{self._next_id:02d}+00:00",
                        **row,
                    })
                    self._next_id += 1
            return httpx.Response(201)

        if request.method == "DELETE":
            self.rows = [r for r in self.rows if r["name"] != name]
            return httpx.Response(204)

        return httpx.Response(405)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=SUPABASE_BASE, transport=httpx.MockTransport(self.handler))


# ---------------------------------------------------------------------------
# Adapter doubles for the state machine
# ---------------------------------------------------------------------------

class FakeContent:
    configured = True

    def __init__(self):
        self.search_results = {}
        self.default_results = []
        self.details = {}
        self.program_details = {}
        self.location = LocationInfo(text="1 Campus Road", map_url="https://maps.example/1")
        self.gates = {}
        self.calls = []

    def gate(self, key) -> asyncio.Event:
        """Block calls for `key` until the returned event is set."""
        event = asyncio.Event()
        self.gates[key] = event
        return event

    async def _resolve(self, key, value):
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if isinstance(value, Exception):
            raise value
        return value

    async def search(self, query):
        self.calls.append(("search", query))
        return await self._resolve(query, self.search_results.get(query, self.default_results))

    async def get_details(self, name):
        self.calls.append(("details", name))
        value = self.details.get(name, UniversityDetails(id=name, name=name))
        return await self._resolve(name, value)

    async def get_program_details(self, university_name, program):
        self.calls.append(("program", university_name, program.name))
        default = ProgramDetails(**program.model_dump(), overview=f"About {program.name}")
        return await self._resolve(program.name, self.program_details.get(program.name, default))

    async def get_location_info(self, name, user_location=None):
        self.calls.append(("location", name, user_location))
        return await self._resolve(("location", name), self.location)


class FakeStore:
    def __init__(self, configured=True):
        self.configured = configured
        self.rows = {}
        self.fail_writes = False
        self.fail_reads = False
        self.gates = {}
        self.calls = []

    def gate(self, operation) -> asyncio.Event:
        """Block `operation` ("list_all" or "exists") until the returned event is set."""
        event = asyncio.Event()
        self.gates[operation] = event
        return event

    async def _wait(self, operation):
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()

    def is_configured(self):
        return self.configured

    async def list_all(self):
        self.calls.append(("list_all",))
        await self._wait("list_all")
        if self.fail_reads:
            raise StoreError("list failed")
        return list(self.rows.values())

    async def upsert(self, university):
        self.calls.append(("upsert", university.name))
        if self.fail_writes:
            raise StoreError("write failed")
        self.rows[university.name] = university

    async def exists(self, name):
        self.calls.append(("exists", name))
        found = name in self.rows
        await self._wait("exists")
        return found

    async def remove(self, name):
        self.calls.append(("remove", name))
        if self.fail_writes:
            raise StoreError("delete failed")
        self.rows.pop(name, None)
