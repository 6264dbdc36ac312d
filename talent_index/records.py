"""Typed records the index reads from the backing store.

Every indexable entity is a dataclass deriving from ``SearchableRecord``.
A variant declares the table it lives in, which columns the lexical fallback
scans, which search filters it supports, and the ordered sections of fields
that make up its searchable text. The projector consumes ``search_sections``
and never inspects fields itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from .common.errors import InvalidInputError

# A label of ``None`` marks free text that is passed through unlabeled.
SearchField = Tuple[Optional[str], Any]


@dataclass(frozen=True)
class Section:
    """Named group of fields rendered as one block in sectioned text."""
    name: str
    fields: Sequence[SearchField]


@dataclass
class SearchableRecord(ABC):
    """Base class for every indexable record."""

    entity_type: ClassVar[str] = ""
    table: ClassVar[str] = ""
    lexical_columns: ClassVar[Tuple[str, ...]] = ()
    filter_columns: ClassVar[Dict[str, str]] = {}
    # Columns whose change implies a specific reindex trigger.
    cv_columns: ClassVar[Tuple[str, ...]] = ()
    skill_columns: ClassVar[Tuple[str, ...]] = ()
    profile_columns: ClassVar[Tuple[str, ...]] = ()

    id: str = ""
    updated_at: Optional[datetime] = None

    @abstractmethod
    def search_sections(self) -> List[Section]:
        """Ordered sections of labeled fields."""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SearchableRecord":
        """Build a record from a store row, ignoring unknown columns."""
        data = dict(row)
        values = {}
        for f in fields(cls):
            if f.name in data and data[f.name] is not None:
                values[f.name] = data[f.name]
        values["id"] = str(data.get("id", ""))
        return cls(**values)


@dataclass
class Candidate(SearchableRecord):
    entity_type: ClassVar[str] = "candidate"
    table: ClassVar[str] = "candidates"
    lexical_columns: ClassVar[Tuple[str, ...]] = (
        "first_name", "last_name", "current_title", "professional_headline",
        "current_location", "summary", "technical_skills", "programming_languages",
        "frameworks",
    )
    filter_columns: ClassVar[Dict[str, str]] = {
        "status": "status",
        "archived": "archived",
        "location": "current_location",
    }
    cv_columns: ClassVar[Tuple[str, ...]] = ("original_cv_url", "original_cv_file_name")
    skill_columns: ClassVar[Tuple[str, ...]] = (
        "technical_skills", "soft_skills", "programming_languages", "frameworks",
        "tools_and_platforms", "methodologies", "certifications", "spoken_languages",
    )
    profile_columns: ClassVar[Tuple[str, ...]] = (
        "first_name", "last_name", "current_title", "professional_headline",
        "summary", "current_location", "experience_years", "seniority_level",
        "education_level", "universities", "degrees",
    )

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    current_title: Optional[str] = None
    current_location: Optional[str] = None
    professional_headline: Optional[str] = None
    summary: Optional[str] = None
    experience_years: Optional[int] = None
    seniority_level: Optional[str] = None
    primary_industry: Optional[str] = None
    functional_domain: Optional[str] = None
    technical_skills: List[str] = field(default_factory=list)
    soft_skills: List[str] = field(default_factory=list)
    programming_languages: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    tools_and_platforms: List[str] = field(default_factory=list)
    methodologies: List[str] = field(default_factory=list)
    spoken_languages: List[str] = field(default_factory=list)
    companies: List[Any] = field(default_factory=list)
    notable_projects: List[str] = field(default_factory=list)
    education_level: Optional[str] = None
    universities: List[str] = field(default_factory=list)
    degrees: List[str] = field(default_factory=list)
    graduation_year: Optional[int] = None
    certifications: List[str] = field(default_factory=list)
    expected_salary: Optional[str] = None
    preferred_contract_type: Optional[str] = None
    remote_preference: Optional[str] = None
    freelancer: bool = False
    relocation_willingness: bool = False
    mobility_countries: List[str] = field(default_factory=list)
    mobility_cities: List[str] = field(default_factory=list)
    work_permit_type: Optional[str] = None
    notice_period: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    status: Optional[str] = None
    archived: bool = False
    original_cv_url: Optional[str] = None
    original_cv_file_name: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or None

    def search_sections(self) -> List[Section]:
        company_names = [
            c.get("name") if isinstance(c, Mapping) else c
            for c in self.companies
        ]
        return [
            Section("BASIC_INFO", [
                ("Name", self.full_name),
                ("Email", self.email),
                ("Phone", self.phone),
                ("Current Title", self.current_title),
                ("Location", self.current_location),
            ]),
            Section("PROFESSIONAL", [
                ("Headline", self.professional_headline),
                ("Summary", self.summary),
                ("Experience", f"{self.experience_years} years" if self.experience_years is not None else None),
                ("Seniority", self.seniority_level),
                ("Industry", self.primary_industry),
                ("Domain", self.functional_domain),
                ("Companies", [n for n in company_names if n]),
                ("Notable Projects", self.notable_projects),
            ]),
            Section("SKILLS", [
                ("Technical Skills", self.technical_skills),
                ("Soft Skills", self.soft_skills),
                ("Programming Languages", self.programming_languages),
                ("Frameworks", self.frameworks),
                ("Tools", self.tools_and_platforms),
                ("Methodologies", self.methodologies),
                ("Languages", self.spoken_languages),
            ]),
            Section("EDUCATION", [
                ("Education Level", self.education_level),
                ("Universities", self.universities),
                ("Degrees", self.degrees),
                ("Graduation Year", self.graduation_year),
                ("Certifications", self.certifications),
            ]),
            Section("PREFERENCES", [
                ("Expected Salary", self.expected_salary),
                ("Contract Type", self.preferred_contract_type),
                ("Remote Preference", self.remote_preference),
                ("Open to Freelance", self.freelancer),
                ("Willing to Relocate", self.relocation_willingness),
                ("Mobility Countries", self.mobility_countries),
                ("Mobility Cities", self.mobility_cities),
                ("Work Permit", self.work_permit_type),
                ("Notice Period", self.notice_period),
            ]),
            Section("META", [
                ("Tags", self.tags),
                ("Status", self.status),
            ]),
        ]


@dataclass
class Job(SearchableRecord):
    entity_type: ClassVar[str] = "job"
    table: ClassVar[str] = "jobs"
    lexical_columns: ClassVar[Tuple[str, ...]] = (
        "title", "description", "company", "location", "required_skills",
    )
    filter_columns: ClassVar[Dict[str, str]] = {
        "status": "status",
        "location": "location",
    }
    skill_columns: ClassVar[Tuple[str, ...]] = ("required_skills", "preferred_skills")
    profile_columns: ClassVar[Tuple[str, ...]] = ("title", "description", "requirements")

    title: Optional[str] = None
    description: Optional[str] = None
    company: Optional[str] = None
    department: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    experience_level: Optional[str] = None
    contract_type: Optional[str] = None
    remote_preference: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    responsibilities: List[str] = field(default_factory=list)
    nice_to_have: List[str] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)
    required_skills: List[str] = field(default_factory=list)
    preferred_skills: List[str] = field(default_factory=list)
    required_languages: List[str] = field(default_factory=list)
    status: Optional[str] = None

    def search_sections(self) -> List[Section]:
        return [
            Section("BASIC_INFO", [
                ("Title", self.title),
                ("Company", self.company),
                ("Department", self.department),
                ("Location", self.location),
                ("Job Type", self.job_type),
                ("Contract Type", self.contract_type),
                ("Remote Preference", self.remote_preference),
            ]),
            Section("DESCRIPTION", [
                (None, self.description),
                ("Experience Level", self.experience_level),
                ("Requirements", self.requirements),
                ("Responsibilities", self.responsibilities),
                ("Nice to Have", self.nice_to_have),
                ("Benefits", self.benefits),
            ]),
            Section("SKILLS", [
                ("Required Skills", self.required_skills),
                ("Preferred Skills", self.preferred_skills),
                ("Languages", self.required_languages),
            ]),
        ]


@dataclass
class Client(SearchableRecord):
    entity_type: ClassVar[str] = "client"
    table: ClassVar[str] = "clients"
    lexical_columns: ClassVar[Tuple[str, ...]] = ("name", "industry", "city", "country")
    filter_columns: ClassVar[Dict[str, str]] = {"location": "city"}

    name: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    contact_person: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def search_sections(self) -> List[Section]:
        return [
            Section("BASIC_INFO", [
                ("Name", self.name),
                ("Industry", self.industry),
                ("Company Size", self.company_size),
                ("City", self.city),
                ("Country", self.country),
                ("Contact", self.contact_person),
            ]),
            Section("NOTES", [
                (None, self.notes),
                ("Tags", self.tags),
            ]),
        ]


@dataclass
class Project(SearchableRecord):
    entity_type: ClassVar[str] = "project"
    table: ClassVar[str] = "projects"
    lexical_columns: ClassVar[Tuple[str, ...]] = ("name", "description", "client_name")
    filter_columns: ClassVar[Dict[str, str]] = {"status": "status"}

    name: Optional[str] = None
    description: Optional[str] = None
    client_name: Optional[str] = None
    notes: Optional[str] = None
    objectives: List[str] = field(default_factory=list)
    deliverables: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    status: Optional[str] = None

    def search_sections(self) -> List[Section]:
        return [
            Section("BASIC_INFO", [
                ("Name", self.name),
                ("Client", self.client_name),
                ("Status", self.status),
            ]),
            Section("DESCRIPTION", [
                (None, self.description),
                ("Objectives", self.objectives),
                ("Deliverables", self.deliverables),
                ("Notes", self.notes),
                ("Tags", self.tags),
            ]),
        ]


@dataclass
class Document(SearchableRecord):
    """Generated competence file attached to a candidate."""

    entity_type: ClassVar[str] = "document"
    table: ClassVar[str] = "competence_files"
    lexical_columns: ClassVar[Tuple[str, ...]] = ("file_name", "template_name")
    filter_columns: ClassVar[Dict[str, str]] = {"status": "status"}
    profile_columns: ClassVar[Tuple[str, ...]] = ("content",)

    candidate_id: Optional[str] = None
    file_name: Optional[str] = None
    template_name: Optional[str] = None
    file_url: Optional[str] = None
    content: Any = None
    status: Optional[str] = None

    def search_sections(self) -> List[Section]:
        return [
            Section("BASIC_INFO", [
                ("File", self.file_name),
                ("Template", self.template_name),
            ]),
            Section("CONTENT", [
                (None, self.content),
            ]),
        ]


RECORD_TYPES: Dict[str, Type[SearchableRecord]] = {
    cls.entity_type: cls for cls in (Candidate, Job, Client, Project, Document)
}


def record_type_for(entity_type: str) -> Type[SearchableRecord]:
    """Resolve an entity type name to its record class."""
    try:
        return RECORD_TYPES[entity_type]
    except KeyError:
        raise InvalidInputError(
            f"Unknown entity type {entity_type!r}; expected one of {sorted(RECORD_TYPES)}"
        ) from None
