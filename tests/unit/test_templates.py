"""Tests for mqttsim._templates — capability template sources.

Test Techniques Used:
    - Specification-based Testing: YAML/JSON document parsing
    - State Transition Testing: mtime-driven reload of FileTemplateSource
    - Error Condition Testing: missing and malformed files
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from mqttsim._templates import (
    DeviceTemplate,
    FileTemplateSource,
    StaticTemplateSource,
    TemplateSource,
    parse_templates,
)

_YAML = """\
version: 1
templates:
  light.rgbct:
    kind: light
    title: RGB + CT bulb
    capabilities:
      color_temp: true
      rgb: true
  fan.big:
    kind: fan
    capabilities:
      maxSpeed: 5
"""


def _touch(path: Path, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


class TestParseTemplates:
    """Document parsing.

    Technique: Specification-based Testing.
    """

    def test_parses_entries(self) -> None:
        snap = parse_templates(
            {"templates": {"t": {"kind": "fan", "capabilities": {"maxSpeed": 4}}}},
        )
        assert snap["t"] == DeviceTemplate(kind="fan", capabilities={"maxSpeed": 4})

    def test_entry_without_kind_skipped(self) -> None:
        snap = parse_templates({"templates": {"bad": {"capabilities": {}}}})
        assert dict(snap) == {}

    @pytest.mark.parametrize("data", [None, [], {"templates": []}, "text"])
    def test_non_mapping_documents_are_empty(self, data: object) -> None:
        assert dict(parse_templates(data)) == {}

    def test_snapshot_is_read_only(self) -> None:
        snap = parse_templates({"templates": {"t": {"kind": "fan"}}})
        with pytest.raises(TypeError):
            snap["x"] = DeviceTemplate(kind="light")  # type: ignore[index]

    def test_to_dict(self) -> None:
        tpl = DeviceTemplate(kind="light", title="Bulb", capabilities={"rgb": True})
        assert tpl.to_dict() == {"kind": "light", "title": "Bulb", "capabilities": {"rgb": True}}


class TestStaticTemplateSource:
    """In-process template source."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(StaticTemplateSource(), TemplateSource)

    def test_snapshot(self) -> None:
        src = StaticTemplateSource({"t": DeviceTemplate(kind="fan")})
        assert src.snapshot()["t"].kind == "fan"


class TestFileTemplateSource:
    """File-backed templates with mtime caching.

    Technique: State Transition Testing via explicit ``os.utime``.
    """

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        src = FileTemplateSource(tmp_path / "absent.yaml")
        assert dict(src.snapshot()) == {}

    def test_reads_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.yaml"
        path.write_text(_YAML, encoding="utf-8")

        snap = FileTemplateSource(path).snapshot()

        assert set(snap) == {"light.rgbct", "fan.big"}
        assert snap["light.rgbct"].title == "RGB + CT bulb"
        assert dict(snap["fan.big"].capabilities) == {"maxSpeed": 5}

    def test_reads_json(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.json"
        path.write_text(
            json.dumps({"version": 1, "templates": {"s": {"kind": "switch"}}}),
            encoding="utf-8",
        )
        assert FileTemplateSource(path).snapshot()["s"].kind == "switch"

    def test_cached_until_mtime_changes(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.yaml"
        path.write_text(_YAML, encoding="utf-8")
        _touch(path, 1_000_000)
        src = FileTemplateSource(path)
        first = src.snapshot()

        path.write_text("templates:\n  only:\n    kind: switch\n", encoding="utf-8")
        _touch(path, 1_000_000)
        assert src.snapshot() is first

        _touch(path, 1_000_100)
        assert set(src.snapshot()) == {"only"}

    def test_file_removed_becomes_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.yaml"
        path.write_text(_YAML, encoding="utf-8")
        src = FileTemplateSource(path)
        assert len(src.snapshot()) == 2

        path.unlink()
        assert dict(src.snapshot()) == {}

    def test_malformed_yaml_logs_and_is_empty(
        self,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        path = tmp_path / "templates.yaml"
        path.write_text("templates: [unclosed", encoding="utf-8")

        assert dict(FileTemplateSource(path).snapshot()) == {}
        assert "Failed to parse template file" in caplog.text

    def test_undecodable_file_logs_and_is_empty(
        self,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        path = tmp_path / "templates.yaml"
        path.write_bytes(b"templates:\n  \xff\xfe: {}\n")

        assert dict(FileTemplateSource(path).snapshot()) == {}
        assert "Failed to read template file" in caplog.text

    def test_unreadable_path_logs_and_is_empty(
        self,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        directory = tmp_path / "templates.yaml"
        directory.mkdir()

        assert dict(FileTemplateSource(directory).snapshot()) == {}
        assert "Failed to read template file" in caplog.text
