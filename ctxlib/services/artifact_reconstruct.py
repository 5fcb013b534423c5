"""
Document reconstruction services.
"""

from __future__ import annotations

from typing import Optional

import ctxlib.config as config
from ctxlib.config import MAX_DOC_TYPE_LENGTH, MAX_SHORT_TEXT_LENGTH
from ctxlib.errors import NotFound
from ctxlib.models import MemoryType
from ctxlib.services.artifact_decompose import MASTER_INDEX_TITLE, strip_metadata_block
from ctxlib.services.document_types import canonical_document_type
from ctxlib.services.memory_search import _search_memory_impl
from ctxlib.services.memory_shared import (
    _validate_required_text,
    service_tool,
    logger,
)

RECONSTRUCT_QUERY = "document sections content"
# Selection is by metadata filter; every filtered match must pass.
RECONSTRUCT_THRESHOLD = -1.0
UNKNOWN_SECTION_PRIORITY = 999

SECTION_ORDER = {
    "Executive Summary": 1,
    "Overview": 2,
    "Problem Statement": 3,
    "Solution Approach": 4,
    "Requirements": 5,
    "Success Criteria": 6,
    "Timeline": 7,
}


def section_sort_key(title: str) -> tuple[int, str]:
    return SECTION_ORDER.get(title, UNKNOWN_SECTION_PRIORITY), title


def _format_tags(tags) -> str:
    if isinstance(tags, list):
        return ", ".join(str(tag) for tag in tags)
    return str(tags or "")


def assemble_document(
    project_name: str,
    document_type: str,
    sections: list[dict],
    master_index: Optional[dict],
) -> str:
    """Render ordered sections under a header block, master index last."""
    reference = sections[0] if sections else master_index
    meta = reference.get("metadata", {}) if reference else {}
    blocks = [
        "\n".join(
            [
                f"# {project_name} - {document_type}",
                f"Project: {project_name}",
                f"Type: {document_type}",
                f"Tags: {_format_tags(meta.get('tags'))}",
                f"Priority: {meta.get('priority', '')}",
                f"Timestamp: {meta.get('timestamp', '')}",
                f"Sections: {len(sections)}",
            ]
        )
    ]
    for section in sections:
        title = section["metadata"].get("section", "")
        blocks.append(f"## {title}\n\n{strip_metadata_block(section['content'])}")
    if master_index:
        blocks.append(f"## {MASTER_INDEX_TITLE}\n\n{master_index['content']}")
    return "\n\n".join(blocks) + "\n"


@service_tool
def artifact_reconstruct(
    project_name: str,
    document_type: str,
    namespace: str,
) -> dict:
    """
    Reassemble a decomposed document from its stored sections.

    Returns NotFound only when neither sections nor a master index exist.
    Missing individual sections are tolerated.
    """
    _validate_required_text(project_name, "project_name", MAX_SHORT_TEXT_LENGTH)
    _validate_required_text(document_type, "document_type", MAX_DOC_TYPE_LENGTH)
    _validate_required_text(namespace, "namespace", MAX_SHORT_TEXT_LENGTH)
    document_type = canonical_document_type(document_type)

    matches = _search_memory_impl(
        query=RECONSTRUCT_QUERY,
        namespace=namespace,
        metadata_filters={"projectName": project_name, "documentType": document_type},
        top_k=config.RECONSTRUCT_TOP_K,
        threshold=RECONSTRUCT_THRESHOLD,
        with_metadata=True,
    )

    master_index = None
    sections = []
    for match in matches:
        memory_type = match["metadata"].get("type")
        if memory_type == MemoryType.master_index.value:
            master_index = match
        elif memory_type == MemoryType.artifact_section.value:
            sections.append(match)

    if not sections and master_index is None:
        raise NotFound(f"No document found for project '{project_name}' and type '{document_type}'")

    sections.sort(key=lambda item: section_sort_key(item["metadata"].get("section", "")))
    document = assemble_document(project_name, document_type, sections, master_index)
    logger.info(
        "artifact_reconstructed",
        extra={
            "namespace": namespace,
            "document_type": document_type,
            "section_count": len(sections),
            "has_master_index": master_index is not None,
        },
    )
    return {
        "status": "found",
        "project_name": project_name,
        "document_type": document_type,
        "document": document,
        "section_count": len(sections),
        "section_titles": [item["metadata"].get("section", "") for item in sections],
        "master_index_id": master_index["id"] if master_index else None,
    }
