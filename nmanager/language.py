"""Language packs used to translate words in notification templates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

import yaml

from nmanager.types import ALERT_FIRING, ALERT_RESOLVED

DEFAULT_LANGUAGE = "English"


def _entries(pack: str) -> list[Mapping]:
    loaded = yaml.safe_load(pack)
    if loaded is None:
        return []
    if not isinstance(loaded, list):
        raise ValueError("a language pack must be a list of languages")
    for entry in loaded:
        if entry is not None and not isinstance(entry, Mapping):
            raise ValueError("each language in a pack must be a mapping")
    return [entry for entry in loaded if entry is not None]


def parse_dictionary(packs: Iterable[str]) -> dict[str, dict[str, str]]:
    """Merge YAML language packs into a map of language to lower-cased word map."""
    dictionary: dict[str, dict[str, str]] = {}
    for pack in packs:
        for entry in _entries(pack):
            name = entry.get("name") or ""
            words = dictionary.setdefault(str(name), {})
            raw_words = entry.get("dictionary") or {}
            if not isinstance(raw_words, Mapping):
                raise ValueError(f"dictionary of language {name!r} must be a mapping")
            for key, value in raw_words.items():
                if not isinstance(value, str):
                    raise ValueError(f"translation of {key!r} must be a string")
                words[str(key).lower()] = value

    dictionary[DEFAULT_LANGUAGE] = {
        ALERT_FIRING: ALERT_FIRING.upper(),
        ALERT_RESOLVED: ALERT_RESOLVED.upper(),
    }
    return dictionary