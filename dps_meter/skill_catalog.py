"""Skill id -> display name lookup with a synthesized fallback label."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

SKILLS_FILENAME = "skills.json"

_LOGGER = logging.getLogger("DPSMeter.Catalog")

SkillResolver = Callable[[int], Optional[str]]


def fallback_label(skill_id: Any) -> str:
    return f"Skill #{skill_id}"


def load_skill_names(path: Path) -> Dict[int, str]:
    """Read a ``{"<id>": "Name"}`` or ``{"<id>": {"SkillName": ...}}`` file.

    Missing or unreadable files yield an empty table; bad rows are skipped.
    """

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        _LOGGER.debug("Failed to load skill names from %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        return {}
    names: Dict[int, str] = {}
    for key, value in raw.items():
        try:
            skill_id = int(key)
        except (TypeError, ValueError):
            continue
        if isinstance(value, Mapping):
            value = value.get("SkillName") or value.get("name")
        if isinstance(value, str) and value.strip():
            names[skill_id] = value.strip()
    return names


class SkillCatalog:
    """Read-only skill name table, optionally backed by a host resolver."""

    def __init__(self, names: Optional[Mapping[int, str]] = None, resolver: Optional[SkillResolver] = None) -> None:
        self._names: Dict[int, str] = dict(names or {})
        self._resolver = resolver

    @classmethod
    def from_plugin_dir(cls, plugin_dir: Path, resolver: Optional[SkillResolver] = None) -> "SkillCatalog":
        names = load_skill_names(Path(plugin_dir) / SKILLS_FILENAME)
        if names:
            _LOGGER.debug("Loaded %d skill names from %s", len(names), SKILLS_FILENAME)
        return cls(names, resolver=resolver)

    def __len__(self) -> int:
        return len(self._names)

    def name_for(self, skill_id: Optional[int]) -> Optional[str]:
        if skill_id is None:
            return None
        if self._resolver is not None:
            try:
                resolved = self._resolver(skill_id)
            except Exception as exc:
                _LOGGER.debug("Host skill resolver failed for %s: %s", skill_id, exc)
                resolved = None
            if isinstance(resolved, str) and resolved and resolved != "undefined":
                return resolved
        return self._names.get(skill_id)

    def label_for(self, skill_id: int) -> str:
        return self.name_for(skill_id) or fallback_label(skill_id)
