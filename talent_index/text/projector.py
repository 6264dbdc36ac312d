"""Projection of typed records into searchable text.

Two renderings are produced from the same ordered sections:

- ``project``: one flat line, the ``search_text`` stored next to the vector
  and scanned by lexical search. Collections are space-joined.
- ``project_sections``: labeled ``[SECTION]`` blocks with comma-joined
  collections, the input to chunking and embedding.

Both are pure functions of the record (and optional pre-extracted document
text): missing values are dropped, never replaced by placeholders, and the
same snapshot always renders byte-identical text.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from ..records import SearchField, SearchableRecord, Section
from .chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, Chunk, chunk

FIELD_SEPARATOR = " | "


@dataclass(frozen=True)
class Enrichment:
    """Document text extracted outside the projector."""
    cv_text: Optional[str] = None
    competence_text: Optional[str] = None

    def section(self) -> Optional[Section]:
        fields = [("CV", self.cv_text), ("Competence File", self.competence_text)]
        if not any(_present(v) for _, v in fields):
            return None
        return Section("DOCUMENTS", fields)


def _present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, frozenset, Mapping)):
        return any(_present(v) for v in _flatten(value))
    return True


def _flatten(value: Any) -> Iterable[Any]:
    """Yield leaf values; mappings contribute their values in key order."""
    if isinstance(value, Mapping):
        for key in sorted(value, key=str):
            yield from _flatten(value[key])
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _flatten(item)
    elif isinstance(value, (set, frozenset)):
        for item in sorted(value, key=str):
            yield from _flatten(item)
    else:
        yield value


def _leaves(value: Any) -> List[str]:
    return [
        str(v).strip() for v in _flatten(value)
        if v is not None and not isinstance(v, bool) and str(v).strip()
    ]


def _render_field(label: Optional[str], value: Any, joiner: str) -> Optional[str]:
    if not _present(value):
        return None
    if value is True:
        # Flags render as their label phrase, e.g. "Open to Freelance".
        return label
    rendered = joiner.join(_leaves(value))
    if not rendered:
        return None
    return rendered if label is None else f"{label}: {rendered}"


def _sections(record: SearchableRecord, enrichment: Optional[Enrichment]) -> List[Section]:
    sections = list(record.search_sections())
    if enrichment is not None:
        documents = enrichment.section()
        if documents is not None:
            sections.append(documents)
    return sections


def _rendered_fields(fields: Iterable[SearchField], joiner: str) -> List[str]:
    rendered = (_render_field(label, value, joiner) for label, value in fields)
    return [r for r in rendered if r]


def project(record: SearchableRecord, enrichment: Optional[Enrichment] = None) -> str:
    """Render the flat search text of ``record``."""
    parts: List[str] = []
    for section in _sections(record, enrichment):
        parts.extend(_rendered_fields(section.fields, " "))
    return FIELD_SEPARATOR.join(parts)


def project_sections(record: SearchableRecord, enrichment: Optional[Enrichment] = None) -> str:
    """Render ``record`` as labeled section blocks separated by blank lines."""
    blocks = []
    for section in _sections(record, enrichment):
        lines = _rendered_fields(section.fields, ", ")
        if lines:
            blocks.append(f"[{section.name}]\n" + "\n".join(lines))
    return "\n\n".join(blocks)


def prepare_chunks(
    record: SearchableRecord,
    enrichment: Optional[Enrichment] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[Chunk]:
    """Chunk the sectioned text of ``record`` for embedding."""
    return chunk(project_sections(record, enrichment), chunk_size, overlap)
