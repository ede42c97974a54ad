from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml

from archive_migrator.clients.source import dedupe_preserving_order


class StaticInventory:
    def __init__(self, doc_ids: Iterable[str]) -> None:
        self._doc_ids = dedupe_preserving_order(
            [str(doc_id).strip() for doc_id in doc_ids if str(doc_id).strip()]
        )

    def list_pending_documents(self) -> list[str]:
        return list(self._doc_ids)


def load_inventory_file(path: Path | str) -> StaticInventory:
    """Load document ids from YAML: a plain list or ``{documents: [...]}``."""
    inventory_path = Path(path)
    if not inventory_path.exists():
        raise FileNotFoundError(f"Inventory file not found: {inventory_path}")

    with inventory_path.open("r", encoding="utf-8") as file:
        data = yaml.safe_load(file) or []

    if isinstance(data, dict):
        data = data.get("documents", [])
    if not isinstance(data, list):
        raise ValueError(f"Inventory file must contain a list of ids: {inventory_path}")

    doc_ids: list[str] = []
    for item in data:
        value = item.get("id") if isinstance(item, dict) else item
        if value is not None:
            doc_ids.append(str(value))
    return StaticInventory(doc_ids)
