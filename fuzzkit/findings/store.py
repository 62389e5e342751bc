"""
Findings store: one record per fingerprint, persisted as JSON Lines.

Records are kept in first-seen order and never removed; a repeat sighting
only bumps observation_count/last_seen. The whole file is rewritten through
a temp file + rename so a crash mid-write never leaves a torn store.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from fuzzkit.errors import ConfigError
from fuzzkit.models import Classification, Finding

logger = logging.getLogger(__name__)


class FindingsStore:
    """Fingerprint-keyed, lock-protected findings collection."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._by_fingerprint: dict[str, Finding] = {}
        self._by_id: dict[str, Finding] = {}
        if self.path and self.path.exists():
            self._load()

    def record(self, candidate: Finding) -> tuple[Finding, bool]:
        """
        Insert candidate unless its fingerprint is known.

        Returns (stored finding, is_new). On a repeat the existing record's
        observation count is incremented and the candidate is discarded.
        """
        with self._lock:
            existing = self._by_fingerprint.get(candidate.fingerprint)
            if existing is not None:
                existing.observation_count += 1
                existing.last_seen = datetime.now(timezone.utc)
                is_new = False
                stored = existing
            else:
                self._by_fingerprint[candidate.fingerprint] = candidate
                self._by_id[candidate.id] = candidate
                is_new = True
                stored = candidate
            self._save_locked()
            return stored, is_new

    def get(self, finding_id: str) -> Optional[Finding]:
        with self._lock:
            return self._by_id.get(finding_id)

    def by_fingerprint(self, fingerprint: str) -> Optional[Finding]:
        with self._lock:
            return self._by_fingerprint.get(fingerprint)

    def all(self) -> list[Finding]:
        with self._lock:
            return list(self._by_fingerprint.values())

    def query(self, classification: Classification | str | None = None, strategy: str | None = None) -> list[Finding]:
        """Findings filtered by classification and/or strategy name."""
        if classification is not None:
            classification = Classification(classification)
        return [
            f for f in self.all()
            if (classification is None or f.classification == classification)
            and (strategy is None or f.strategy == strategy)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_fingerprint)

    # ── persistence ──────────────────────────────────────────────────────

    def _load(self) -> None:
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise ConfigError(f"failed to read findings store {self.path}: {e}") from e
        for lineno, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                finding = Finding.model_validate_json(line)
            except ValidationError as e:
                raise ConfigError(f"corrupt findings store {self.path} line {lineno}: {e.errors()[0].get('msg')}") from e
            self._by_fingerprint[finding.fingerprint] = finding
            self._by_id[finding.id] = finding
        logger.debug("loaded %d findings from %s", len(self._by_fingerprint), self.path)

    def _save_locked(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for finding in self._by_fingerprint.values():
                f.write(finding.model_dump_json() + "\n")
        os.replace(tmp, self.path)
