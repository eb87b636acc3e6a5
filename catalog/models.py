"""
Value objects exchanged between the adapters, the state machine and the UI.

Every model is frozen: the state machine replaces records wholesale and never
patches them in place.  Field names are snake_case in Python and camelCase on
the wire (the content service is asked for camelCase JSON, and the backend
serialises snapshots the same way), so both spellings validate.

    University          one search hit        (id, name, location, country, type, classification, ...)
    UniversityDetails   University + world_ranking, programs, sources
    Program             one programme summary nested in UniversityDetails.programs
    ProgramDetails      Program + overview, curriculum, career_prospects, admission_requirements
    GroundingSource     provenance link attached to a content-service answer
    LocationInfo        address text + optional map link
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class InstitutionType(str, Enum):
    PUBLIC = "Public"
    PRIVATE = "Private"


class DegreeLevel(str, Enum):
    UNDERGRADUATE = "Undergraduate"
    POSTGRADUATE = "Postgraduate"
    DOCTORAL = "Doctoral"


class Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Lenient coercion for model output
# ---------------------------------------------------------------------------

def _coerce_institution_type(value: Any) -> InstitutionType:
    if isinstance(value, InstitutionType):
        return value
    if isinstance(value, str) and "private" in value.lower():
        return InstitutionType.PRIVATE
    return InstitutionType.PUBLIC


def _coerce_degree(value: Any) -> DegreeLevel:
    if isinstance(value, DegreeLevel):
        return value
    text = str(value or "").lower()
    if any(k in text for k in ("doctor", "phd", "d.phil")):
        return DegreeLevel.DOCTORAL
    if "undergrad" in text or "bachelor" in text:
        return DegreeLevel.UNDERGRADUATE
    if any(k in text for k in ("postgrad", "graduate", "master", "msc", "mba")):
        return DegreeLevel.POSTGRADUATE
    return DegreeLevel.UNDERGRADUATE


def _coerce_ranking(value: Any) -> int | None:
    """Accept 12, 12.0, "12", "#12", "Top 12"; anything else is unknown."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    match = re.search(r"\d+", str(value))
    return int(match.group()) if match else None


def _coerce_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v) for v in value if v is not None and str(v).strip()]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class GroundingSource(Record):
    title: str = "Reference"
    uri: str


class Program(Record):
    name: str
    degree: DegreeLevel = DegreeLevel.UNDERGRADUATE
    faculty: str = ""
    duration: str = ""
    tuition_estimate: str = ""

    @field_validator("degree", mode="before")
    @classmethod
    def _degree(cls, v: Any) -> DegreeLevel:
        return _coerce_degree(v)

    @field_validator("faculty", "duration", "tuition_estimate", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)


class ProgramDetails(Program):
    overview: str = ""
    curriculum: list[str] = Field(default_factory=list)
    career_prospects: list[str] = Field(default_factory=list)
    admission_requirements: list[str] = Field(default_factory=list)

    @field_validator("curriculum", "career_prospects", "admission_requirements", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _coerce_text_list(v)

    @field_validator("overview", mode="before")
    @classmethod
    def _overview(cls, v: Any) -> str:
        return "" if v is None else str(v)


class University(Record):
    """
    A single institution as shown in the list view.

    `id` is a batch-local token for live search hits and the store's own
    identifier for rows loaded back from the repository.
    """
    id: str = ""
    name: str
    location: str = ""
    country: str = ""
    type: InstitutionType = InstitutionType.PUBLIC
    classification: str = ""
    description: str | None = None
    website: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> InstitutionType:
        return _coerce_institution_type(v)

    @field_validator("location", "country", "classification", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def classifications(self) -> list[str]:
        """Classification is a comma-separated tag list."""
        return [c.strip() for c in self.classification.split(",") if c.strip()]


class UniversityDetails(University):
    world_ranking: int | None = None
    programs: list[Program] = Field(default_factory=list)
    sources: list[GroundingSource] = Field(default_factory=list)

    @field_validator("world_ranking", mode="before")
    @classmethod
    def _ranking(cls, v: Any) -> int | None:
        return _coerce_ranking(v)

    @field_validator("programs", "sources", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def find_program(self, name: str) -> Program | None:
        return next((p for p in self.programs if p.name == name), None)


class UserLocation(Record):
    lat: float
    lng: float


class LocationInfo(Record):
    text: str
    map_url: str | None = None
