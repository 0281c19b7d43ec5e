"""Keyword presets: fixed texts the bot answers with a stored image."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

logger = logging.getLogger(__name__)

DEFAULT_PRESETS: Mapping[str, str] = {
    "menu1": "images/menu1.jpg",
    "menu2": "images/menu2.jpg",
    "menu3": "images/menu3.jpg",
    "menu4": "images/menu4.jpg",
}


class Presets(Mapping[str, str]):
    """Read-only keyword -> object key mapping, in declaration order."""

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries = MappingProxyType(dict(DEFAULT_PRESETS if entries is None else entries))

    def __getitem__(self, keyword: str) -> str:
        return self._entries[keyword]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def load_presets_from_file(path: str) -> Presets:
    """Load a JSON object of ``{"keyword": "object/key.jpg"}``."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ValueError(f"Presets file {path} must be a JSON object of strings")
    logger.info("Loaded %d preset(s) from %s", len(data), path)
    return Presets(data)
