from __future__ import annotations

from xml.etree.ElementTree import fromstring

import pytest

from archive_migrator.document.metadata import compose_metadata, render_metadata_xml

DIGEST = "a" * 64


def test_compose_metadata_binds_identity_and_digest() -> None:
    metadata = compose_metadata("doc-001", 3, DIGEST.upper())

    assert metadata.doc_id == "doc-001"
    assert metadata.page_count == 3
    assert metadata.custody_digest == DIGEST


def test_compose_metadata_rejects_bad_digest() -> None:
    with pytest.raises(ValueError, match="SHA-256"):
        compose_metadata("doc-001", 3, "deadbeef")


def test_compose_metadata_rejects_empty_document() -> None:
    with pytest.raises(ValueError, match="page_count"):
        compose_metadata("doc-001", 0, DIGEST)


def test_render_metadata_xml_escapes_and_orders_fields() -> None:
    metadata = compose_metadata("doc <&> 1", 2, DIGEST)

    xml_bytes = render_metadata_xml(metadata)

    assert xml_bytes.startswith(b"<?xml")
    root = fromstring(xml_bytes)
    assert root.tag == "Document"
    assert [child.tag for child in root] == ["id", "pages", "chainHash"]
    assert root.findtext("id") == "doc <&> 1"
    assert root.findtext("pages") == "2"
    assert root.findtext("chainHash") == DIGEST
