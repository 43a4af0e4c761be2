"""Channel registration loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import ChannelConfig


class ChannelLoadError(RuntimeError):
    """Raised when one or more registration files cannot be parsed."""


class ChannelRegistry:
    """Holds channel registrations loaded from YAML files on disk.

    A file holds either a single registration or a ``channels:`` list.
    Later search paths override earlier ones when context ids collide.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._channels: dict[str, ChannelConfig] = {}

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load(self) -> dict[str, ChannelConfig]:
        channels: dict[str, ChannelConfig] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                for entry in _registrations(document):
                    try:
                        channel = ChannelConfig.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Channel validation error in {path}: {exc}")
                        continue
                    channels[channel.context_id] = channel

        if errors:
            raise ChannelLoadError("; ".join(errors))

        self._channels.update(channels)
        return dict(self._channels)

    def register(self, config: ChannelConfig) -> ChannelConfig:
        self._channels[config.context_id] = config
        return config

    def get(self, context_id: str) -> ChannelConfig | None:
        return self._channels.get(context_id)

    def all(self) -> list[ChannelConfig]:
        return list(self._channels.values())

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._channels


def _registrations(document: Any) -> list[Any]:
    if isinstance(document, dict) and "channels" in document:
        entries = document["channels"] or []
        return list(entries) if isinstance(entries, list) else [entries]
    return [document]


def load_channels(search_paths: Iterable[Path] | None = None) -> ChannelRegistry:
    """Build a registry and load every registration under ``search_paths``."""

    registry = ChannelRegistry(search_paths)
    registry.load()
    return registry


__all__ = ["ChannelLoadError", "ChannelRegistry", "load_channels"]
