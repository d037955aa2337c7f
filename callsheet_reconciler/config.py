"""Configuration helpers for the upload pipeline."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from .errors import ConfigurationError
from .phone import DEFAULT_COUNTRY_CODE, DEFAULT_MOBILE_PREFIXES
from .templates import (
    DEFAULT_TEMPLATE_VERSION,
    TEMPLATES,
    TemplateDescriptor,
    get_template,
    register_template,
    template_from_mapping,
)

LOGGER = logging.getLogger(__name__)

_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


@dataclass(frozen=True)
class PipelineConfig:
    """Tunable settings passed explicitly into every pipeline call."""

    template_version: str = DEFAULT_TEMPLATE_VERSION
    replay_window_seconds: float = 300.0
    max_edit_distance: int = 3
    batch_size: int = 50
    country_code: str = DEFAULT_COUNTRY_CODE
    mobile_prefixes: Tuple[str, ...] = DEFAULT_MOBILE_PREFIXES
    templates: Mapping[str, TemplateDescriptor] = field(default_factory=lambda: TEMPLATES, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.replay_window_seconds < 0:
            raise ConfigurationError("replay_window_seconds cannot be negative")
        if self.max_edit_distance < 0:
            raise ConfigurationError("max_edit_distance cannot be negative")

    def template(self, version: str | None = None) -> TemplateDescriptor:
        return get_template(version or self.template_version, self.templates)

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        return replace(self, **changes)


def load_configuration(path: str | Path) -> Dict[str, Any]:
    """Load configuration data from a JSON or YAML file."""

    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file '{file_path}' was not found")

    if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported configuration format '{file_path.suffix}'. Supported extensions: {sorted(_SUPPORTED_EXTENSIONS)}"
        )

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - declared dependency
            raise ConfigurationError(
                "YAML configuration requires the 'pyyaml' package to be installed"
            ) from exc
        data = yaml.safe_load(text)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping at the top level")
    return data


def pipeline_config_from_mapping(data: Mapping[str, Any]) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from the ``pipeline`` section of a config file.

    Templates declared under ``templates`` are added to a registry private to
    the returned config, on top of the built-in ones.
    """

    registry: Dict[str, TemplateDescriptor] = dict(TEMPLATES)
    for template_data in data.get("templates", []) or []:
        register_template(template_from_mapping(template_data), registry)

    section = data.get("pipeline", {}) or {}
    known = {item.name for item in fields(PipelineConfig)} - {"templates"}
    unknown = sorted(set(section) - known)
    if unknown:
        LOGGER.warning("Ignoring unknown pipeline settings: %s", ", ".join(unknown))

    values = {key: value for key, value in section.items() if key in known}
    if "mobile_prefixes" in values:
        values["mobile_prefixes"] = tuple(str(prefix) for prefix in values["mobile_prefixes"])
    if "country_code" in values:
        values["country_code"] = str(values["country_code"]).lstrip("+")

    try:
        config = PipelineConfig(templates=registry, **values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc

    config.template()
    return config


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    return pipeline_config_from_mapping(load_configuration(path))


__all__ = [
    "ConfigurationError",
    "PipelineConfig",
    "load_configuration",
    "load_pipeline_config",
    "pipeline_config_from_mapping",
]
