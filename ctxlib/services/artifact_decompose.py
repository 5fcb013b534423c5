"""
Document decomposition services.

Raw document text is split into ordered sections by a chain of strategies,
each engaged only when the previous ones produced nothing usable:

1. markdown headers (``#`` to ``###``)
2. canonical PRD sections located by regex windows (PRD documents only)
3. blank-line separated paragraphs
4. the whole document as a single section

Every section is stored as its own memory, followed by one master index
memory enumerating the stored sections.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, List

import ctxlib.config as config
from ctxlib.config import (
    MAX_DOCUMENT_LENGTH,
    MAX_DOC_TYPE_LENGTH,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TAG_ITEMS,
    MAX_LIST_ITEM_LENGTH,
)
from ctxlib.errors import CoreError, ValidationIssue
from ctxlib.models import MemoryType
from ctxlib.services import document_types
from ctxlib.services.memory_shared import (
    _validate_required_text,
    _validate_optional_text,
    _validate_string_list,
    STATUS_PARTIAL_FAILURE,
    service_tool,
    logger,
)
from ctxlib.services.memory_storage import _store_memory

MASTER_INDEX_TITLE = "Master Index"
MASTER_INDEX_SECTION_TYPE = "master_index"
WHOLE_DOCUMENT_TITLE = "Complete Document"

HEADER_RE = re.compile(r"^#{1,3}(?!#)[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
PARAGRAPH_SPLIT_RE = re.compile(r"\r?\n[ \t]*\r?\n")

# Canonical PRD sections, in emission order, with the label spellings that open each one.
PRD_SECTION_LABELS: list[tuple[str, str]] = [
    ("Executive Summary", r"executive\s+summary"),
    ("Problem Statement", r"problem\s+statement"),
    ("Solution Approach", r"(?:solution\s+approach|proposed\s+solution)"),
    ("Requirements", r"(?:functional\s+|technical\s+)?requirements"),
    ("Success Criteria", r"(?:success\s+criteria|success\s+metrics)"),
]

# First match wins.
SECTION_TYPE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("summary",), "summary"),
    (("overview", "introduction", "background"), "overview"),
    (("problem",), "problem"),
    (("solution", "approach", "design", "architecture"), "solution"),
    (("requirement", "user stor", "acceptance"), "requirements"),
    (("success", "criteria", "metric", "kpi"), "success_criteria"),
    (("timeline", "milestone", "schedule", "roadmap"), "timeline"),
    (("api", "endpoint", "interface"), "api"),
    (("risk",), "risks"),
]


@dataclass
class DocumentSection:
    title: str
    body: str
    section_type: str = "content"


def _heading_pattern(label: str) -> re.Pattern:
    # Label at the start of a line (optionally numbered, bolded or
    # header-marked) or anywhere when followed by a colon.
    return re.compile(
        r"(?im)(?:^[ \t]*(?:#+[ \t]*)?(?:\d+[.)][ \t]*)?(?:\*\*)?\b" + label
        + r"\b(?:\*\*)?[ \t]*:?(?:\*\*)?|\b" + label + r"\b[ \t]*:)"
    )


def _keyword_pattern(label: str) -> re.Pattern:
    return re.compile(r"(?i)\b" + label + r"\b[ \t]*:?")


# Heading-like occurrences win over bare keywords in running text.
PRD_SECTION_PATTERNS = [
    (title, _heading_pattern(label), _keyword_pattern(label))
    for title, label in PRD_SECTION_LABELS
]


def infer_section_type(title: str) -> str:
    lowered = title.lower()
    if lowered.startswith("part "):
        return "part"
    if lowered == WHOLE_DOCUMENT_TITLE.lower():
        return "document"
    for keywords, section_type in SECTION_TYPE_RULES:
        if any(keyword in lowered for keyword in keywords):
            return section_type
    return "content"


def split_by_headers(raw_text: str, document_type: str) -> List[DocumentSection]:
    """Split on markdown headers; only used when it yields more than one section."""
    headers = list(HEADER_RE.finditer(raw_text))
    sections = []
    for index, match in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(raw_text)
        body = raw_text[match.end():end].strip()
        if not body:
            continue
        title = match.group(1).strip()
        sections.append(DocumentSection(title=title, body=body, section_type=infer_section_type(title)))
    return sections if len(sections) > 1 else []


def extract_prd_sections(raw_text: str, document_type: str) -> List[DocumentSection]:
    if document_type != document_types.PRD:
        return []
    found = []
    for title, heading, keyword in PRD_SECTION_PATTERNS:
        match = heading.search(raw_text) or keyword.search(raw_text)
        if match:
            found.append((match.start(), match.end(), title))
    starts = sorted(start for start, _, _ in found)
    sections = []
    for start, end, title in found:
        following = [value for value in starts if value > start]
        window_end = following[0] if following else len(raw_text)
        body = raw_text[end:window_end].strip()
        if body:
            sections.append(DocumentSection(title=title, body=body, section_type=infer_section_type(title)))
    return sections


def split_paragraphs(raw_text: str, document_type: str) -> List[DocumentSection]:
    paragraphs = [
        chunk.strip() for chunk in PARAGRAPH_SPLIT_RE.split(raw_text)
        if len(chunk.strip()) > config.DECOMPOSE_MIN_PARAGRAPH_LENGTH
    ]
    return [
        DocumentSection(title=f"Part {index}", body=paragraph, section_type="part")
        for index, paragraph in enumerate(paragraphs, start=1)
    ]


def whole_document(raw_text: str, document_type: str) -> List[DocumentSection]:
    return [DocumentSection(title=WHOLE_DOCUMENT_TITLE, body=raw_text, section_type="document")]


SECTION_STRATEGIES: list[Callable[[str, str], List[DocumentSection]]] = [
    split_by_headers,
    extract_prd_sections,
    split_paragraphs,
    whole_document,
]


def split_into_sections(raw_text: str, document_type: str) -> List[DocumentSection]:
    for strategy in SECTION_STRATEGIES:
        sections = strategy(raw_text, document_type)
        if sections:
            logger.debug(
                "decompose_strategy_selected",
                extra={"strategy": strategy.__name__, "section_count": len(sections)},
            )
            return sections
    return []


def default_tags(document_type: str) -> list[str]:
    return ["document", document_type]


def format_metadata_block(
    *,
    project_name: str,
    document_type: str,
    section: str,
    priority: str,
    tags: list[str],
    timestamp: str,
    section_type: str,
) -> str:
    return "\n".join(
        [
            f"PROJECT: {project_name}",
            f"DOCUMENT_TYPE: {document_type}",
            f"SECTION: {section}",
            f"PRIORITY: {priority}",
            f"TAGS: {', '.join(tags)}",
            f"TIMESTAMP: {timestamp}",
            f"SECTION_TYPE: {section_type}",
        ]
    )


def strip_metadata_block(content: str) -> str:
    """Return the body of stored section text, without its metadata block."""
    if content.startswith("PROJECT: ") and "\n\n" in content:
        return content.split("\n\n", 1)[1].strip()
    return content.strip()


def format_master_index(header: str, stored: list[dict]) -> str:
    lines = [header, "", "MASTER INDEX", f"Total Sections: {len(stored)}"]
    for position, entry in enumerate(stored, start=1):
        lines.append(f"{position}. {entry['title']} ({entry['section_type']}) - ID: {entry['id']}")
    return "\n".join(lines)


def validate_decompose_inputs(
    *,
    raw_text: str,
    namespace: str,
    document_type: Optional[str],
    project_name: Optional[str],
    priority: Optional[str],
    tags: Optional[List[str]],
) -> None:
    _validate_required_text(raw_text, "raw_text", MAX_DOCUMENT_LENGTH)
    _validate_required_text(namespace, "namespace", MAX_SHORT_TEXT_LENGTH)
    _validate_optional_text(document_type, "document_type", MAX_DOC_TYPE_LENGTH)
    _validate_optional_text(project_name, "project_name", MAX_SHORT_TEXT_LENGTH)
    _validate_optional_text(priority, "priority", MAX_SHORT_TEXT_LENGTH)
    _validate_string_list(tags, "tags", MAX_TAG_ITEMS, MAX_LIST_ITEM_LENGTH)


def _failure_entry(title: str, exc: Exception) -> dict:
    memory_id = getattr(exc, "memory_id", None)
    return {
        "id": memory_id,
        "title": title,
        "reason": str(exc),
        "pending_reconciliation": memory_id is not None,
    }


@service_tool
def artifact_decompose(
    raw_text: str,
    namespace: str,
    document_type: Optional[str] = None,
    project_name: Optional[str] = None,
    priority: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> dict:
    """
    Split a document into sections and store each one plus a master index.

    Args:
        raw_text: Full document text
        namespace: Owning user's namespace
        document_type: PRD, TechnicalSpec, FeatureRequest, Journal, Documentation;
            detected from the text when omitted
        project_name: Project the artifact belongs to
        priority: Section priority label (default Medium)
        tags: Section tags (default ["document", <document_type>])

    Returns:
        Section ids and titles, the master index id, success_count and
        total_sections. Sections that fail to store are listed in ``errors``.
    """
    validate_decompose_inputs(
        raw_text=raw_text,
        namespace=namespace,
        document_type=document_type,
        project_name=project_name,
        priority=priority,
        tags=tags,
    )
    doc_type = (
        document_types.canonical_document_type(document_type)
        or document_types.detect_document_type(raw_text)
    )
    project = (project_name or "").strip() or config.DEFAULT_PROJECT_NAME
    priority_value = (priority or "").strip() or config.DEFAULT_PRIORITY
    tag_values = list(tags) if tags else default_tags(doc_type)
    timestamp = datetime.utcnow().isoformat()

    sections = split_into_sections(raw_text, doc_type)
    stored: list[dict] = []
    errors: list[dict] = []

    base_metadata = {
        "projectName": project,
        "documentType": doc_type,
        "priority": priority_value,
        "tags": tag_values,
        "timestamp": timestamp,
    }

    for index, section in enumerate(sections, start=1):
        header = format_metadata_block(
            project_name=project,
            document_type=doc_type,
            section=section.title,
            priority=priority_value,
            tags=tag_values,
            timestamp=timestamp,
            section_type=section.section_type,
        )
        metadata = {
            **base_metadata,
            "section": section.title,
            "sectionType": section.section_type,
            "sectionIndex": str(index),
        }
        try:
            memory_id = _store_memory(
                f"{header}\n\n{section.body}",
                namespace,
                metadata,
                memory_type=MemoryType.artifact_section.value,
            )
        except (CoreError, ValidationIssue) as exc:
            logger.warning(
                "section_store_failed",
                extra={
                    "namespace": namespace,
                    "section_index": index,
                    "error_type": exc.error_type,
                },
            )
            errors.append(_failure_entry(section.title, exc))
            continue
        stored.append({"id": memory_id, "title": section.title, "section_type": section.section_type})

    master_index_id = None
    if stored:
        header = format_metadata_block(
            project_name=project,
            document_type=doc_type,
            section=MASTER_INDEX_TITLE,
            priority=priority_value,
            tags=tag_values,
            timestamp=timestamp,
            section_type=MASTER_INDEX_SECTION_TYPE,
        )
        try:
            master_index_id = _store_memory(
                format_master_index(header, stored),
                namespace,
                {
                    **base_metadata,
                    "section": MASTER_INDEX_TITLE,
                    "sectionType": MASTER_INDEX_SECTION_TYPE,
                    "sectionCount": str(len(stored)),
                },
                memory_type=MemoryType.master_index.value,
            )
        except (CoreError, ValidationIssue) as exc:
            logger.warning(
                "master_index_store_failed",
                extra={"namespace": namespace, "error_type": exc.error_type},
            )
            errors.append(_failure_entry(MASTER_INDEX_TITLE, exc))

    if not errors:
        status = "stored"
    elif stored:
        status = STATUS_PARTIAL_FAILURE
    else:
        status = "error"
    logger.info(
        "artifact_decomposed",
        extra={
            "namespace": namespace,
            "document_type": doc_type,
            "success_count": len(stored),
            "total_sections": len(sections),
        },
    )
    return {
        "status": status,
        "project_name": project,
        "document_type": doc_type,
        "sections": stored,
        "master_index_id": master_index_id,
        "success_count": len(stored),
        "total_sections": len(sections),
        "summary": f"{len(stored)}/{len(sections)} sections stored",
        "errors": errors,
    }
