"""Versioned column templates for call-sheet uploads."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping, MutableMapping, Optional, Sequence, Tuple

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

_SEPARATOR_RE = re.compile(r"[\s\-]+")
_INVALID_CHAR_RE = re.compile(r"[^a-z0-9_]")


def normalize_column_name(name: object) -> str:
    text = str(name or "").lower().strip()
    return _INVALID_CHAR_RE.sub("", _SEPARATOR_RE.sub("_", text))


@dataclass(frozen=True)
class TemplateField:
    """One required column.

    ``target`` is the :class:`~callsheet_reconciler.models.ParsedContact`
    attribute the cell is copied into.
    """

    key: str
    display_name: str
    target: str
    synonyms: Tuple[str, ...] = ()

    @property
    def accepted_names(self) -> FrozenSet[str]:
        names = {self.key, normalize_column_name(self.display_name)}
        names.update(normalize_column_name(synonym) for synonym in self.synonyms)
        return frozenset(names)

    def matches(self, normalized: str) -> bool:
        return bool(normalized) and normalized in self.accepted_names


@dataclass(frozen=True)
class TemplateDescriptor:
    version: str
    fields: Tuple[TemplateField, ...]
    description: str = ""

    @property
    def width(self) -> int:
        return len(self.fields)

    @property
    def phone_field(self) -> TemplateField:
        for template_field in self.fields:
            if template_field.target == "phone":
                return template_field
        raise ConfigurationError(f"Template {self.version} has no phone column")

    def field_for(self, target: str) -> TemplateField:
        for template_field in self.fields:
            if template_field.target == target:
                return template_field
        raise KeyError(target)

    def position_of(self, target: str) -> int:
        for index, template_field in enumerate(self.fields):
            if template_field.target == target:
                return index
        raise KeyError(target)


_COMPANY_SYNONYMS = ("company", "company_name", "business_name", "name_of_company", "name_of_the_company")
_PHONE_SYNONYMS = ("phone", "phone_number", "contact_number", "mobile", "mobile_number", "telephone")
_PERSON_SYNONYMS = ("contact_person", "contact_person_name", "contact_name", "person")
_LICENSE_SYNONYMS = ("trade_license", "trade_license_number", "license_number", "tl_number")
_CITY_SYNONYMS = ("city", "emirate", "town")

CALL_SHEET_V1 = TemplateDescriptor(
    version="v1",
    description="Four column contact sheet",
    fields=(
        TemplateField("company_name", "Company Name", "company", _COMPANY_SYNONYMS),
        TemplateField("phone_number", "Phone Number", "phone", _PHONE_SYNONYMS),
        TemplateField("contact_person_name", "Contact Person Name", "contact_person", _PERSON_SYNONYMS),
        TemplateField("trade_license_number", "Trade License Number", "trade_license", _LICENSE_SYNONYMS),
    ),
)

CALL_SHEET_V2 = TemplateDescriptor(
    version="v2",
    description="Five column contact sheet with city",
    fields=CALL_SHEET_V1.fields + (TemplateField("city", "City", "city", _CITY_SYNONYMS),),
)

CALL_SHEET_V3 = TemplateDescriptor(
    version="v3",
    description="Six column call sheet (company, number, industry, address, area, emirate)",
    fields=(
        TemplateField("name_of_the_company", "Name of the Company", "company", _COMPANY_SYNONYMS),
        TemplateField("contact_number", "Contact Number", "phone", _PHONE_SYNONYMS),
        TemplateField("industry", "Industry", "industry", ("sector", "business_type")),
        TemplateField("address", "Address", "address", ("street_address", "location")),
        TemplateField("area", "Area", "area", ("district", "community")),
        TemplateField("emirate", "Emirate", "city", _CITY_SYNONYMS),
    ),
)

DEFAULT_TEMPLATE_VERSION = CALL_SHEET_V3.version

TEMPLATES: Mapping[str, TemplateDescriptor] = MappingProxyType(
    {template.version: template for template in (CALL_SHEET_V1, CALL_SHEET_V2, CALL_SHEET_V3)}
)


def get_template(version: str | None = None, registry: Optional[Mapping[str, TemplateDescriptor]] = None) -> TemplateDescriptor:
    """Look ``version`` up in ``registry``, or in the built-in templates when none is given."""

    templates = TEMPLATES if registry is None else registry
    key = version or DEFAULT_TEMPLATE_VERSION
    try:
        return templates[key]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown template version '{key}'. Known versions: {sorted(templates)}"
        ) from exc


def template_from_mapping(data: Mapping[str, object]) -> TemplateDescriptor:
    """Build a descriptor from configuration data.

    Expected shape: ``{"version": "v4", "fields": [{"key": ..., "display_name":
    ..., "target": ..., "synonyms": [...]}, ...]}``.
    """

    version = data.get("version")
    raw_fields = data.get("fields")
    if not version or not isinstance(raw_fields, Sequence) or not raw_fields:
        raise ConfigurationError("Template configuration requires 'version' and a non-empty 'fields' list")

    fields = []
    for raw in raw_fields:
        if not isinstance(raw, Mapping) or not raw.get("display_name") or not raw.get("target"):
            raise ConfigurationError(f"Template field requires 'display_name' and 'target': {raw!r}")
        display_name = str(raw["display_name"])
        fields.append(
            TemplateField(
                key=normalize_column_name(raw.get("key") or display_name),
                display_name=display_name,
                target=str(raw["target"]),
                synonyms=tuple(str(item) for item in raw.get("synonyms", ()) or ()),
            )
        )
    return TemplateDescriptor(version=str(version), fields=tuple(fields), description=str(data.get("description", "")))


def register_template(template: TemplateDescriptor, registry: MutableMapping[str, TemplateDescriptor]) -> None:
    if template.version in registry:
        LOGGER.info("Template %s replaced by configuration", template.version)
    registry[template.version] = template


__all__ = [
    "CALL_SHEET_V1",
    "CALL_SHEET_V2",
    "CALL_SHEET_V3",
    "DEFAULT_TEMPLATE_VERSION",
    "TEMPLATES",
    "TemplateDescriptor",
    "TemplateField",
    "get_template",
    "normalize_column_name",
    "register_template",
    "template_from_mapping",
]
