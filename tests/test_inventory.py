from __future__ import annotations

from pathlib import Path

import pytest

from archive_migrator.clients.inventory import StaticInventory, load_inventory_file


def test_static_inventory_strips_and_dedupes() -> None:
    inventory = StaticInventory([" doc-1 ", "doc-2", "", "doc-1"])

    assert inventory.list_pending_documents() == ["doc-1", "doc-2"]


def test_load_inventory_file_plain_list(tmp_path: Path) -> None:
    path = tmp_path / "inventory.yaml"
    path.write_text("- doc-1\n- doc-2\n- 3\n", encoding="utf-8")

    assert load_inventory_file(path).list_pending_documents() == ["doc-1", "doc-2", "3"]


def test_load_inventory_file_documents_mapping(tmp_path: Path) -> None:
    path = tmp_path / "inventory.yaml"
    path.write_text(
        "documents:\n  - id: doc-1\n  - id: null\n  - doc-2\n", encoding="utf-8"
    )

    assert load_inventory_file(path).list_pending_documents() == ["doc-1", "doc-2"]


def test_load_inventory_file_empty(tmp_path: Path) -> None:
    path = tmp_path / "inventory.yaml"
    path.write_text("", encoding="utf-8")

    assert load_inventory_file(path).list_pending_documents() == []


def test_load_inventory_file_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Inventory file not found"):
        load_inventory_file(tmp_path / "missing.yaml")


def test_load_inventory_file_rejects_scalar(tmp_path: Path) -> None:
    path = tmp_path / "inventory.yaml"
    path.write_text("just-a-string\n", encoding="utf-8")

    with pytest.raises(ValueError, match="list of ids"):
        load_inventory_file(path)
