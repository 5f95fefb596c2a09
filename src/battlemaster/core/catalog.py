"""Label catalog loading and matching (core domain)."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from battlemaster.core.aturi import RKEY_LENGTH
from battlemaster.core.errors import CategoryError, ConfigError
from battlemaster.core.models import CATEGORIES, LabelDefinition, Locale

SEVERITIES = ("inform", "alert", "none")
BLURS = ("content", "media", "none")
DEFAULT_SETTINGS = ("ignore", "warn", "hide")


def validate_category(identifier: str) -> str:
    """Return ``identifier`` if it names a known category, else raise."""

    if identifier in CATEGORIES:
        return identifier
    raise CategoryError(f"Invalid label: {identifier}")


def _build_locales(raw_locales: object, where: str) -> tuple[Locale, ...]:
    if not isinstance(raw_locales, list) or not raw_locales:
        raise ConfigError(f"{where}: locales must be a non-empty list")
    locales: List[Locale] = []
    for index, entry in enumerate(raw_locales):
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: locale #{index} must be an object")
        lang = entry.get("lang")
        name = entry.get("name")
        description = entry.get("description")
        if not isinstance(lang, str) or len(lang) < 2:
            raise ConfigError(f"{where}: locale #{index} lang must be at least 2 characters")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"{where}: locale #{index} name is required")
        if not isinstance(description, str) or not description:
            raise ConfigError(f"{where}: locale #{index} description is required")
        locales.append(Locale(lang=lang, name=name, description=description))
    return tuple(locales)


def _choice(entry: dict, key: str, allowed: tuple[str, ...], default: str, where: str) -> str:
    value = entry.get(key, default)
    if value not in allowed:
        raise ConfigError(f"{where}: {key} must be one of {', '.join(allowed)}, got {value!r}")
    return value


def build_label(entry: dict) -> LabelDefinition:
    """Validate one raw catalog entry.

    ``category`` defaults to the identifier, which is how the shipped labels
    are named.
    """

    identifier = entry.get("identifier")
    if not isinstance(identifier, str) or not identifier:
        raise ConfigError("label identifier is required")
    where = f"label {identifier!r}"

    rkey = entry.get("rkey")
    if not isinstance(rkey, str) or len(rkey) != RKEY_LENGTH:
        raise ConfigError(f"{where}: rkey must contain exactly {RKEY_LENGTH} characters")

    category = entry.get("category", identifier)
    try:
        validate_category(category)
    except CategoryError as exc:
        raise ConfigError(f"{where}: {exc}") from exc

    adult_only = entry.get("adult_only", False)
    if not isinstance(adult_only, bool):
        raise ConfigError(f"{where}: adult_only must be true or false")

    return LabelDefinition(
        rkey=rkey,
        identifier=identifier,
        category=category,
        locales=_build_locales(entry.get("locales"), where),
        severity=_choice(entry, "severity", SEVERITIES, "inform", where),
        blurs=_choice(entry, "blurs", BLURS, "none", where),
        default_setting=_choice(entry, "default_setting", DEFAULT_SETTINGS, "warn", where),
        adult_only=adult_only,
    )


class LabelCatalog:
    """Immutable lookup from marker post record key to label definition."""

    def __init__(self, labels: Iterable[LabelDefinition]) -> None:
        self._labels = tuple(labels)
        self._by_rkey: Dict[str, LabelDefinition] = {}
        for label in self._labels:
            if label.rkey in self._by_rkey:
                raise ConfigError(f"duplicate rkey {label.rkey} in label catalog")
            self._by_rkey[label.rkey] = label

    def __iter__(self) -> Iterator[LabelDefinition]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def match(self, rkey: str) -> Optional[LabelDefinition]:
        return self._by_rkey.get(rkey)

    def validate_category(self, identifier: str) -> str:
        return validate_category(identifier)

    def value_definitions(self) -> List[dict]:
        """Render the catalog as ATProto ``labelValueDefinitions``."""

        return [
            {
                "identifier": label.identifier,
                "severity": label.severity,
                "blurs": label.blurs,
                "defaultSetting": label.default_setting,
                "adultOnly": label.adult_only,
                "locales": [
                    {"lang": locale.lang, "name": locale.name, "description": locale.description}
                    for locale in label.locales
                ],
            }
            for label in self._labels
        ]


def build_catalog(raw_labels: Iterable[dict]) -> LabelCatalog:
    """Validate the ``labels`` section of config.json into a catalog."""

    labels = []
    for entry in raw_labels:
        if not isinstance(entry, dict):
            raise ConfigError("each label entry must be an object")
        if not entry.get("enabled", True):
            continue
        labels.append(build_label(entry))
    return LabelCatalog(labels)
