"""
Seed manager: the baseline request templates a campaign mutates.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Sequence

from pydantic import ValidationError

from fuzzkit.config import TargetProfile
from fuzzkit.errors import ConfigError
from fuzzkit.models import RequestTemplate

logger = logging.getLogger(__name__)


class SeedManager:
    """Ordered, read-only set of templates handed out round-robin."""

    def __init__(self, templates: Iterable[RequestTemplate]):
        self._templates: tuple[RequestTemplate, ...] = tuple(templates)
        if not self._templates:
            raise ConfigError("no request templates loaded")

        self._by_id: dict[str, RequestTemplate] = {}
        for template in self._templates:
            if template.id in self._by_id:
                raise ConfigError(f"duplicate template id: {template.id}")
            self._by_id[template.id] = template
        self._cursor = 0

    def next(self) -> RequestTemplate:
        """Return the next template in round-robin order."""
        template = self._templates[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._templates)
        return template

    def all(self) -> Sequence[RequestTemplate]:
        return self._templates

    def get(self, template_id: str) -> RequestTemplate:
        try:
            return self._by_id[template_id]
        except KeyError:
            raise ConfigError(f"unknown template id: {template_id}") from None

    def __len__(self) -> int:
        return len(self._templates)

    def __repr__(self) -> str:
        return f"<SeedManager templates={len(self._templates)}>"


def load_templates(path: str | Path) -> list[RequestTemplate]:
    """
    Load templates from a JSON file.

    Accepts either a bare list of templates or {"templates": [...]}.
    Templates without an id get one derived from their position.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"failed to read templates: {path} ({e})") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in templates {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("templates")
    if not isinstance(data, list):
        raise ConfigError(f"templates file {path} must contain a list of templates")

    templates = []
    for i, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise ConfigError(f"template #{i} in {path} is not an object")
        raw = dict(raw)
        raw.setdefault("id", f"t{i}")
        try:
            templates.append(RequestTemplate(**raw))
        except ValidationError as e:
            raise ConfigError(f"invalid template #{i} in {path}: {e.errors()[0].get('msg')}") from e

    logger.debug("loaded %d templates from %s", len(templates), path)
    return templates


def template_from_profile(profile: TargetProfile) -> RequestTemplate:
    """Build the single template described by a target profile."""
    return RequestTemplate(
        id=profile.name,
        method=profile.method.upper(),
        path="/" + profile.endpoint.lstrip("/"),
        headers={"Content-Type": "application/json"},
        body=profile.body,
    )
