"""Tests for the device registry and matcher."""

import json
import subprocess
import threading
from unittest.mock import Mock

import pytest

from silo_provision.exceptions import RegistryLoadError
from silo_provision.registry import (
    DeviceMatcher,
    DeviceRenderer,
    load_registry,
    load_registry_or_empty,
)
from silo_provision.types import DeviceRegistryEntry

HASH_A = "0x" + "a1" * 32
HASH_B = "0x" + "b2" * 32


class RecordingRenderer(DeviceRenderer):
    def __init__(self):
        self.calls = []

    def show_name(self, name):
        self.calls.append(("name", name))

    def show_poap(self, poap):
        self.calls.append(("poap", poap))

    def open_image(self, image):
        self.calls.append(("image", image))


@pytest.fixture
def registry_file(tmp_path):
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([
        {"primaryPublicKeyHash": HASH_A, "name": "Genesis SiLo", "poap": "https://poap.example/1", "image": "a.png"},
        {"primaryPublicKeyHash": HASH_B},
    ]))
    return path


class TestLoadRegistry:
    """Tests for loading registry files."""

    def test_loads_entries_in_order(self, registry_file):
        entries = load_registry(registry_file)
        assert [e.primary_public_key_hash for e in entries] == [HASH_A, HASH_B]
        assert entries[0].name == "Genesis SiLo"
        assert entries[1].name is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(RegistryLoadError):
            load_registry(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(RegistryLoadError):
            load_registry(path)

    def test_not_an_array(self, tmp_path):
        path = tmp_path / "obj.json"
        path.write_text(json.dumps({"primaryPublicKeyHash": HASH_A}))
        with pytest.raises(RegistryLoadError):
            load_registry(path)

    def test_invalid_entries_skipped(self, tmp_path, caplog):
        path = tmp_path / "mixed.json"
        path.write_text(json.dumps([
            {"name": "no hash"},
            {"primaryPublicKeyHash": HASH_A, "name": 42},
            {"primaryPublicKeyHash": HASH_B, "name": "kept"},
        ]))
        with caplog.at_level("WARNING", logger="silo_provision.registry"):
            entries = load_registry(path)

        assert [e.primary_public_key_hash for e in entries] == [HASH_B]
        assert "skipping registry entry 0" in caplog.text
        assert "skipping registry entry 1" in caplog.text

    def test_matcher_still_finds_valid_entry(self, tmp_path):
        path = tmp_path / "mixed.json"
        path.write_text(json.dumps([{"name": "x"}, {"primaryPublicKeyHash": HASH_A}]))
        assert DeviceMatcher.find(HASH_A, load_registry_or_empty(path)) is not None

    def test_degrades_to_empty(self, tmp_path):
        assert load_registry_or_empty(tmp_path / "missing.json") == []
        assert load_registry_or_empty(None) == []


class TestDeviceMatcher:
    """Tests for registry lookup and rendering."""

    @pytest.fixture
    def entries(self, registry_file):
        return load_registry(registry_file)

    def test_find_prefixed(self, entries):
        assert DeviceMatcher.find(HASH_A, entries).name == "Genesis SiLo"

    def test_find_unprefixed(self, entries):
        assert DeviceMatcher.find(HASH_B[2:], entries).primary_public_key_hash == HASH_B

    def test_find_absent(self, entries):
        assert DeviceMatcher.find("0x" + "00" * 32, entries) is None

    def test_render_calls_hooks(self, entries):
        renderer = RecordingRenderer()
        entry = DeviceMatcher(entries, renderer).render(HASH_A)
        assert entry.name == "Genesis SiLo"
        assert renderer.calls == [
            ("name", "Genesis SiLo"),
            ("poap", "https://poap.example/1"),
            ("image", "a.png"),
        ]

    def test_render_skips_missing_fields(self, entries):
        renderer = RecordingRenderer()
        DeviceMatcher(entries, renderer).render(HASH_B)
        assert renderer.calls == []

    def test_render_no_match(self, entries):
        renderer = RecordingRenderer()
        assert DeviceMatcher(entries, renderer).render("0x" + "00" * 32) is None
        assert renderer.calls == []

    def test_entry_by_field_name(self):
        entry = DeviceRegistryEntry(primary_public_key_hash=HASH_A)
        assert DeviceMatcher.find(HASH_A, [entry]) is entry


class TestDeviceRenderer:
    """Tests for the default renderer's image viewer handling."""

    def test_viewer_is_reaped(self, monkeypatch):
        exited = threading.Event()
        viewer = Mock(pid=4242)
        viewer.wait.side_effect = lambda: exited.set()
        popen = Mock(return_value=viewer)
        monkeypatch.setattr(subprocess, "Popen", popen)

        DeviceRenderer().open_image("a.png")

        assert popen.call_args.args[0][1] == "a.png"
        assert exited.wait(timeout=5)

    def test_missing_viewer_logged(self, monkeypatch, caplog):
        monkeypatch.setattr(subprocess, "Popen", Mock(side_effect=FileNotFoundError("xdg-open")))
        with caplog.at_level("WARNING", logger="silo_provision.registry"):
            DeviceRenderer().open_image("a.png")
        assert "could not open image a.png" in caplog.text
