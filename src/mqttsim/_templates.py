"""Capability templates: named presets resolved at create/update time.

A template is a named capability preset for one kind, e.g.::

    version: 1
    templates:
      light.rgbct:
        kind: light
        title: RGB + CT bulb
        capabilities:
          color_temp: true
          rgb: true

Templates are not stored entities.  The lifecycle manager reads them
through :class:`TemplateSource`, which always hands out an immutable
snapshot; how and when a source refreshes is its own business.

Sources provided:

- :class:`StaticTemplateSource` — fixed in-process mapping
- :class:`FileTemplateSource` — YAML or JSON file, re-read whenever
  the file's modification time changes
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceTemplate:
    """Immutable capability preset for one device kind."""

    kind: str
    title: str | None = None
    capabilities: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "title": self.title,
            "capabilities": dict(self.capabilities),
        }


TemplateSnapshot = Mapping[str, DeviceTemplate]


def parse_templates(data: object) -> TemplateSnapshot:
    """Build a snapshot from a parsed ``{version, templates}`` document.

    Anything that is not a mapping with a ``templates`` mapping yields an
    empty snapshot; individual entries without a ``kind`` are skipped.
    """
    if not isinstance(data, Mapping) or not isinstance(data.get("templates"), Mapping):
        return MappingProxyType({})
    templates: dict[str, DeviceTemplate] = {}
    for template_id, raw in data["templates"].items():
        if not isinstance(raw, Mapping) or not raw.get("kind"):
            logger.warning("Skipping malformed template %r", template_id)
            continue
        templates[str(template_id)] = DeviceTemplate(
            kind=str(raw["kind"]),
            title=raw.get("title"),
            capabilities=MappingProxyType(dict(raw.get("capabilities") or {})),
        )
    return MappingProxyType(templates)


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class TemplateSource(Protocol):
    """Provider of capability templates."""

    def snapshot(self) -> TemplateSnapshot:
        """Return the current, immutable template mapping."""
        ...


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class StaticTemplateSource:
    """Template source over a fixed mapping."""

    def __init__(self, templates: Mapping[str, DeviceTemplate] | None = None) -> None:
        self._snapshot: TemplateSnapshot = MappingProxyType(dict(templates or {}))

    def snapshot(self) -> TemplateSnapshot:
        return self._snapshot


class FileTemplateSource:
    """Template source reading a YAML (``.yaml``/``.yml``) or JSON file.

    The parsed snapshot is cached together with the file's modification
    time and re-read only when that time changes.  A missing file is an
    empty snapshot, not an error.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._mtime: float | None = None
        self._snapshot: TemplateSnapshot = MappingProxyType({})

    @property
    def path(self) -> Path:
        return self._path

    def snapshot(self) -> TemplateSnapshot:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            mtime = 0.0
        if mtime != self._mtime:
            self._snapshot = self._read() if mtime else MappingProxyType({})
            self._mtime = mtime
        return self._snapshot

    def _read(self) -> TemplateSnapshot:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.exception("Failed to read template file %s", self._path)
            return MappingProxyType({})
        try:
            if self._path.suffix == ".json":
                data = json.loads(raw)
            else:
                data = yaml.safe_load(raw)
        except (json.JSONDecodeError, yaml.YAMLError):
            logger.exception("Failed to parse template file %s", self._path)
            return MappingProxyType({})
        snapshot = parse_templates(data)
        logger.info("Loaded %d device templates from %s", len(snapshot), self._path)
        return snapshot
