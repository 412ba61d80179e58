"""Ownership auto-resolution from an ``owners.json`` rules file.

Format::

    {"ownership": [{"pattern": "^security-", "owner": "security-team"}, ...]}

Rules are regular expressions tested against the instruction id in file
order; the first match wins.  The parsed rules are cached by file mtime so
editing the file takes effect without a restart.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from instruction_spine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class OwnershipRule:
    pattern: re.Pattern[str]
    owner: str


class OwnershipResolver:
    """Best-effort id → owner lookup."""

    def __init__(self, path: Path | None):
        self.path = path
        self._mtime: float | None = None
        self._rules: list[OwnershipRule] = []

    def resolve(self, instruction_id: str) -> str | None:
        for rule in self._load_rules():
            if rule.pattern.search(instruction_id):
                return rule.owner
        return None

    def _load_rules(self) -> list[OwnershipRule]:
        if self.path is None:
            return []
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            self._mtime, self._rules = None, []
            return []
        if mtime == self._mtime:
            return self._rules

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("ownership.unreadable", path=str(self.path), error=str(exc))
            self._mtime, self._rules = mtime, []
            return []

        rules: list[OwnershipRule] = []
        entries = raw.get("ownership", []) if isinstance(raw, dict) else []
        for entry in entries:
            pattern = entry.get("pattern") if isinstance(entry, dict) else None
            owner = entry.get("owner") if isinstance(entry, dict) else None
            if not isinstance(pattern, str) or not isinstance(owner, str) or not owner:
                logger.warning("ownership.rule_ignored", rule=entry)
                continue
            try:
                rules.append(OwnershipRule(re.compile(pattern), owner))
            except re.error as exc:
                logger.warning("ownership.bad_pattern", pattern=pattern, error=str(exc))

        self._mtime, self._rules = mtime, rules
        logger.debug("ownership.rules_loaded", path=str(self.path), count=len(rules))
        return rules
