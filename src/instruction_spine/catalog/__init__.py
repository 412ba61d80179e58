"""Catalog engine -- persistence, governance and integrity of instruction records.

Architecture::

    models.py       InstructionRecord (pydantic, camelCase on disk)
    classifier.py   normalize → enrich → governance gates, merge rules
    store.py        CatalogStore: index, atomic writes, serialized mutations
    locks.py        per-id FIFO locks under a shared/exclusive catalog lock
    storage.py      RecordStorage protocol, DirectoryStorage, atomic_write_text
    integrity.py    governance hash, body audit, integrity report
    queries.py      pure read actions (list/search/query/diff/export)
    snapshots.py    canonical + dated snapshot dumps
    ownership.py    owners.json regex rules
    audit.py        JSONL mutation trail
"""

from instruction_spine.catalog.models import InstructionRecord, PriorityTier
from instruction_spine.catalog.store import CatalogStore, GroomMode

__all__ = ["CatalogStore", "GroomMode", "InstructionRecord", "PriorityTier"]
