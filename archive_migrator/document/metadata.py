from __future__ import annotations

import re
from dataclasses import dataclass
from xml.etree.ElementTree import Element, SubElement, tostring

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True, slots=True)
class Metadata:
    doc_id: str
    page_count: int
    custody_digest: str


def compose_metadata(doc_id: str, page_count: int, custody_digest: str) -> Metadata:
    if page_count < 1:
        raise ValueError(f"page_count must be positive, got {page_count}")
    normalized_digest = custody_digest.strip().lower()
    if not _HEX_DIGEST.match(normalized_digest):
        raise ValueError(f"custody_digest is not a SHA-256 hex digest: {custody_digest}")
    return Metadata(
        doc_id=doc_id,
        page_count=page_count,
        custody_digest=normalized_digest,
    )


def render_metadata_xml(metadata: Metadata) -> bytes:
    root = Element("Document")
    SubElement(root, "id").text = metadata.doc_id
    SubElement(root, "pages").text = str(metadata.page_count)
    SubElement(root, "chainHash").text = metadata.custody_digest
    return tostring(root, encoding="utf-8", xml_declaration=True) + b"\n"
