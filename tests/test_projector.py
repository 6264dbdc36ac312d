"""Tests for record projection."""

from dataclasses import replace

import pytest

from talent_index.records import Candidate, Client, Document, Job, Project, SearchableRecord
from talent_index.text.projector import Enrichment, prepare_chunks, project, project_sections


def _candidate(**overrides):
    values = dict(
        id="c1",
        first_name="Alice",
        last_name="Johnson",
        current_title="ML Engineer",
        summary="Builds ranking systems.",
        technical_skills=["Python", "TensorFlow"],
        freelancer=True,
        status="active",
    )
    values.update(overrides)
    return Candidate(**values)


def test_project_is_idempotent():
    """Unchanged record projects to identical text."""
    record = _candidate()
    assert project(record) == project(record)
    assert project_sections(record) == project_sections(record)


def test_project_differs_when_consumed_field_changes():
    """Any consumed field change alters the projection."""
    record = _candidate()
    for change in (
        {"first_name": "Alicia"},
        {"technical_skills": ["Python", "PyTorch"]},
        {"summary": "Builds search systems."},
        {"relocation_willingness": True},
        {"companies": [{"name": "Acme"}]},
        {"mobility_cities": ["Lyon"]},
        {"experience_years": 0},
    ):
        assert project(record) != project(replace(record, **change)), change


def test_project_flat_text():
    text = project(_candidate())

    assert text.startswith("Name: Alice Johnson | Current Title: ML Engineer")
    assert "Builds ranking systems." in text
    assert "Technical Skills: Python TensorFlow" in text
    assert "Open to Freelance" in text
    assert "Willing to Relocate" not in text


def test_missing_values_are_omitted():
    """Missing fields produce no labels or placeholders."""
    text = project(Candidate(id="c2", first_name="Bob"))

    assert text == "Name: Bob"
    assert "None" not in text


def test_project_sections_blocks():
    sections = project_sections(_candidate())
    blocks = sections.split("\n\n")

    assert blocks[0] == "[BASIC_INFO]\nName: Alice Johnson\nCurrent Title: ML Engineer"
    assert "[SKILLS]\nTechnical Skills: Python, TensorFlow" in sections
    assert "[EDUCATION]" not in sections


def test_enrichment_appends_documents_section():
    record = _candidate()
    enriched = project_sections(record, Enrichment(cv_text="Kubernetes operator at scale"))

    assert enriched.endswith("[DOCUMENTS]\nCV: Kubernetes operator at scale")
    assert project_sections(record, Enrichment()) == project_sections(record)


def test_other_record_types():
    job = Job(id="j1", title="Data Engineer", required_skills=["Spark", "SQL"], location="Lyon")
    client = Client(id="k1", name="Acme", city="Lyon", country="France")
    document = Document(id="d1", file_name="alice.pdf", content={"summary": "Python expert", "years": 7})

    assert project(job) == "Title: Data Engineer | Location: Lyon | Required Skills: Spark SQL"
    assert project(client) == "Name: Acme | City: Lyon | Country: France"
    assert project(document) == "File: alice.pdf | Python expert 7"


def test_prepare_chunks_uses_sectioned_text():
    chunks = prepare_chunks(_candidate(), chunk_size=1000, overlap=200)

    assert len(chunks) == 1
    assert chunks[0].text == project_sections(_candidate())


@pytest.mark.parametrize("first,second", [
    (Project(id="p1", name="Atlas", description="Migrate billing"),
     Project(id="p1", name="Atlas", notes="Migrate billing")),
    (Client(id="k1", name="Acme", city="Lyon"),
     Client(id="k1", name="Acme", country="Lyon")),
    (Candidate(id="c1", first_name="A", mobility_countries=["France"]),
     Candidate(id="c1", first_name="A", mobility_cities=["France"])),
    (Candidate(id="c1", first_name="A", summary="Senior engineer"),
     Candidate(id="c1", first_name="A", professional_headline="Senior engineer")),
    (Candidate(id="c1", first_name="A", experience_years=0),
     Candidate(id="c1", first_name="A")),
])
def test_project_keeps_fields_apart(first, second):
    """The same value in different fields projects to different text."""
    assert project(first) != project(second)
    assert project_sections(first) != project_sections(second)


def test_project_renders_zero_experience():
    text = project(Candidate(id="c1", first_name="A", experience_years=0))

    assert text == "Name: A | Experience: 0 years"


def test_searchable_record_is_abstract():
    with pytest.raises(TypeError):
        SearchableRecord(id="x")
