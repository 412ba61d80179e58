"""Reserved bootstrap ids and non-instruction metadata files.

Bootstrap seeds govern the catalog itself; they live in the instructions
directory but must never surface in ``list()`` or feed the governance hash.
"""

from __future__ import annotations

import re

RESERVED_IDS = ("000-bootstrapper", "001-lifecycle-bootstrap")

_RESERVED = re.compile(r"^(000-bootstrapper|001-lifecycle-bootstrap)", re.IGNORECASE)
_METADATA_FILES = ("gates.json",)


def is_reserved_id(instruction_id: str) -> bool:
    return bool(_RESERVED.match(instruction_id or ""))


def is_metadata_file(filename: str) -> bool:
    """Files that sit beside records but are not records."""
    name = filename.lower()
    return name in _METADATA_FILES or name.startswith("_") or name.startswith("bootstrap.")


def is_ingestible(filename: str) -> bool:
    """True for ``*.json`` files that the loader should parse."""
    name = filename.lower()
    if not name.endswith(".json"):
        return False
    return not (is_metadata_file(name) or is_reserved_id(name))
