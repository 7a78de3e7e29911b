"""Known-device registry and display-only match rendering."""

import json
import logging
import platform
import subprocess
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Union

from pydantic import ValidationError

from .exceptions import RegistryLoadError
from .types import DeviceRegistryEntry

logger = logging.getLogger(__name__)


def load_registry(path: Union[str, Path]) -> List[DeviceRegistryEntry]:
    """Load a registry file: a JSON array of device entries.

    Entries that fail validation are logged and skipped; the rest load.

    Raises:
        RegistryLoadError: If the file is missing or not a JSON array.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise RegistryLoadError(str(path), e)

    if not isinstance(raw, list):
        raise RegistryLoadError(str(path), TypeError("registry must be a JSON array"))

    entries = []
    for index, item in enumerate(raw):
        try:
            entries.append(DeviceRegistryEntry.model_validate(item))
        except ValidationError as e:
            logger.warning(f"skipping registry entry {index} in {path}: {e.error_count()} invalid field(s)")

    logger.info(f"stored devices to match is {len(entries)}")
    return entries


def load_registry_or_empty(path: Optional[Union[str, Path]]) -> List[DeviceRegistryEntry]:
    """Load a registry, degrading to an empty one on any load error."""
    if not path:
        logger.info("no device match file given.")
        return []
    try:
        return load_registry(path)
    except RegistryLoadError as e:
        logger.warning(f"failed to load {path}: {e.cause}")
        return []


def _prefixed(key_hash: str) -> str:
    key_hash = key_hash.lower()
    return key_hash if key_hash.startswith("0x") else "0x" + key_hash


class DeviceRenderer:
    """Display-only side effects for a matched device.

    The default implementation logs the name and proof-of-attendance
    payload and hands the image to the platform viewer.
    """

    def show_name(self, name: str) -> None:
        logger.info(f"check out that sweet {name}")

    def show_poap(self, poap: str) -> None:
        logger.info(f"proof of attendance: {poap}")

    def open_image(self, image: str) -> None:
        opener = {"Darwin": "open", "Windows": "explorer"}.get(platform.system(), "xdg-open")
        try:
            viewer = subprocess.Popen([opener, image])
        except OSError as e:
            logger.warning(f"could not open image {image}: {e}")
            return
        # reap the viewer when it exits
        threading.Thread(target=viewer.wait, name=f"viewer-{viewer.pid}", daemon=True).start()


class DeviceMatcher:
    """Looks up tags in a preloaded device registry."""

    def __init__(
        self,
        registry: Iterable[DeviceRegistryEntry] = (),
        renderer: Optional[DeviceRenderer] = None,
    ):
        self.registry = list(registry)
        self.renderer = renderer or DeviceRenderer()

    @staticmethod
    def find(key_hash: str, registry: Iterable[DeviceRegistryEntry]) -> Optional[DeviceRegistryEntry]:
        """Return the first entry whose hash matches, with or without ``0x``."""
        wanted = _prefixed(key_hash)
        for entry in registry:
            if _prefixed(entry.primary_public_key_hash) == wanted:
                return entry
        return None

    def render(self, key_hash: str) -> Optional[DeviceRegistryEntry]:
        """Find a device and trigger its display side effects."""
        entry = self.find(key_hash, self.registry)
        if entry is None:
            logger.info("no device found.")
            return None

        if entry.name:
            self.renderer.show_name(entry.name)
        if entry.poap:
            self.renderer.show_poap(entry.poap)
        if entry.image:
            self.renderer.open_image(entry.image)
        return entry
