# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Vendor enum tables and the translator that maps vendor status codes to
canonical health/status labels.

Tables are plain mappings of category -> {vendor code -> canonical label}.
They live in YAML or JSON files next to the code and can be overridden per
vendor. A code that is not in the table resolves to "unknown" instead of
failing the collection.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Set, Tuple

import yaml

from arraypoll.errors import ConfigError
from arraypoll.models.result import UNKNOWN

LOG = logging.getLogger(__name__)

# Bundled default tables, one file per vendor
TABLES_DIR = Path(__file__).parent / "tables"

EnumTable = Dict[str, Dict[str, str]]


def _normalize_code(code: Any) -> Optional[str]:
    """Vendor codes arrive as ints, numeric strings or names; compare them as stripped strings."""
    if code is None:
        return None
    if isinstance(code, bool):
        return str(int(code))
    if isinstance(code, float) and code.is_integer():
        code = int(code)
    text = str(code).strip()
    return text or None


def load_enum_tables(path: str) -> EnumTable:
    """
    Load an enum table file.

    Args:
        path: Path to a YAML (.yaml/.yml) or JSON (.json) file

    Returns:
        Mapping of category -> {code -> label}, with codes normalized to strings

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping of mappings
    """
    if not os.path.exists(path):
        raise ConfigError(f"Enum table file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.lower().endswith('.json'):
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load enum table {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Enum table {path} must be a mapping of categories")

    tables: EnumTable = {}
    for category, entries in raw.items():
        if not isinstance(entries, dict):
            raise ConfigError(f"Enum category {category} in {path} must be a mapping")
        tables[str(category)] = {
            _normalize_code(code): str(label)
            for code, label in entries.items()
            if _normalize_code(code) is not None
        }
    LOG.debug(f"Loaded {len(tables)} enum categories from {path}")
    return tables


def default_table_path(vendor: str) -> str:
    return str(TABLES_DIR / f"{vendor}.yaml")


class EnumTranslator:
    """
    Read-only lookup of vendor codes against a loaded enum table.

    translate() is total: every input yields either a table entry or UNKNOWN.
    """

    def __init__(self, tables: Mapping[str, Mapping[str, str]], vendor: str = ""):
        self.vendor = vendor
        self._tables: EnumTable = {
            str(category): {
                _normalize_code(code): str(label)
                for code, label in entries.items()
                if _normalize_code(code) is not None
            }
            for category, entries in tables.items()
        }
        self._reported_misses: Set[Tuple[str, Optional[str]]] = set()

    @classmethod
    def from_file(cls, path: str, vendor: str = "") -> "EnumTranslator":
        return cls(load_enum_tables(path), vendor=vendor)

    @classmethod
    def for_vendor(cls, vendor: str, override_path: Optional[str] = None) -> "EnumTranslator":
        """Build a translator from an override file, or the bundled table for the vendor."""
        return cls.from_file(override_path or default_table_path(vendor), vendor=vendor)

    @property
    def categories(self):
        return sorted(self._tables)

    def translate(self, category: str, vendor_code: Any) -> str:
        """
        Translate a vendor code to its canonical label.

        Args:
            category: Enum category, e.g. HEALTH_STATUS_E
            vendor_code: Raw code from the vendor payload (int, str or None)

        Returns:
            The canonical label, or "unknown" when the code or category is not mapped
        """
        code = _normalize_code(vendor_code)
        table = self._tables.get(category)
        if table is not None and code is not None:
            label = table.get(code)
            if label is not None:
                return label
        self._report_miss(category, code, table is None)
        return UNKNOWN

    def name_for(self, category: str, vendor_code: Any) -> Optional[str]:
        """Look up a display enum (model names and the like); None when not mapped."""
        code = _normalize_code(vendor_code)
        table = self._tables.get(category)
        if table is None or code is None:
            return None
        return table.get(code)

    def _report_miss(self, category: str, code: Optional[str], missing_category: bool) -> None:
        # Log each distinct miss once per translator
        key = (category, code)
        if key in self._reported_misses:
            return
        self._reported_misses.add(key)
        if missing_category:
            LOG.warning(f"[{self.vendor}] Enum category {category} is not loaded; code {code!r} -> {UNKNOWN}")
        else:
            LOG.info(f"[{self.vendor}] Unmapped code {code!r} in {category} -> {UNKNOWN}")
