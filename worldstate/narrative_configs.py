"""
worldstate/narrative_configs.py -- Stored narrative template configurations.

Operators keep several named template sets ("styles") and pick one as
active.  The store owns the JSON file and performs the one-time migration
of older layouts when it loads, so the renderer only ever receives a
finished ``TemplateSet``.

File layout (version 2)::

    {
      "version": 2,
      "active_id": "default",
      "configs": [{"id", "name", "templates", "isBuiltIn"}, ...]
    }

Migrations:
    - version 1 (a bare list of configs, active id stored elsewhere) is
      wrapped as-is.
    - legacy (a flat ``{template_key: template}`` mapping) becomes a
      ``custom_legacy`` config that is made active.

The built-in ``default`` config is always present and cannot be edited or
deleted.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from pydantic import ValidationError

from worldstate.storage import NARRATIVE_CONFIG_FILENAME, default_data_dir
from worldstate.templates import (
    DEFAULT_CONFIG_ID,
    NarrativeConfig,
    TemplateSet,
    default_config,
    unknown_placeholders,
)
from worldstate.utils import safe_read_json, safe_write_json

logger = logging.getLogger(__name__)

CONFIG_FILE_VERSION = 2
LEGACY_CONFIG_ID = "custom_legacy"


def _warn_unknown_placeholders(config: NarrativeConfig) -> None:
    for template_key, template in config.templates.items():
        unknown = unknown_placeholders(template)
        if unknown:
            logger.warning(
                "Narrative config %r: template %r uses unknown placeholder(s) %s, they render literally",
                config.id, template_key, ", ".join(unknown),
            )


def migrate_config_document(raw) -> tuple[dict, bool]:
    """Bring a stored document to the current layout.

    Returns the migrated document and whether anything changed.
    """
    if raw is None:
        return {"version": CONFIG_FILE_VERSION, "active_id": DEFAULT_CONFIG_ID, "configs": []}, True

    if isinstance(raw, list):
        logger.info("Migrating narrative configs from version 1")
        return {"version": CONFIG_FILE_VERSION, "active_id": DEFAULT_CONFIG_ID, "configs": raw}, True

    if isinstance(raw, dict) and "configs" not in raw:
        if all(isinstance(v, str) for v in raw.values()):
            logger.info("Migrating legacy narrative templates (%d override(s))", len(raw))
            legacy = {
                "id": LEGACY_CONFIG_ID,
                "name": "自定义 (旧版迁移)",
                "templates": dict(raw),
                "isBuiltIn": False,
            }
            return {"version": CONFIG_FILE_VERSION, "active_id": LEGACY_CONFIG_ID, "configs": [legacy]}, True
        logger.warning("Unrecognised narrative config document, starting fresh")
        return {"version": CONFIG_FILE_VERSION, "active_id": DEFAULT_CONFIG_ID, "configs": []}, True

    changed = raw.get("version") != CONFIG_FILE_VERSION
    document = dict(raw)
    document["version"] = CONFIG_FILE_VERSION
    document.setdefault("active_id", DEFAULT_CONFIG_ID)
    return document, changed


class NarrativeConfigStore:
    """Named template configurations backed by one JSON file."""

    def __init__(self, path=None):
        self.path = Path(path) if path else default_data_dir() / NARRATIVE_CONFIG_FILENAME
        self._configs: list[NarrativeConfig] = []
        self._active_id = DEFAULT_CONFIG_ID
        self.load()

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self) -> None:
        document, changed = migrate_config_document(safe_read_json(self.path, default=None))

        configs: list[NarrativeConfig] = []
        for raw in document.get("configs", []):
            try:
                configs.append(NarrativeConfig.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Dropping malformed narrative config: %s", exc)
                changed = True
        if not any(c.id == DEFAULT_CONFIG_ID for c in configs):
            configs.insert(0, default_config())
            changed = True

        self._configs = configs
        self._active_id = document.get("active_id") or DEFAULT_CONFIG_ID
        if self.get(self._active_id) is None:
            self._active_id = DEFAULT_CONFIG_ID
            changed = True
        if changed:
            self.save()

    def save(self) -> None:
        safe_write_json(self.path, {
            "version": CONFIG_FILE_VERSION,
            "active_id": self._active_id,
            "configs": [c.model_dump(by_alias=True, exclude_none=True) for c in self._configs],
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def configs(self) -> list[NarrativeConfig]:
        return list(self._configs)

    @property
    def active_id(self) -> str:
        return self._active_id

    def get(self, config_id: str) -> NarrativeConfig | None:
        return next((c for c in self._configs if c.id == config_id), None)

    def active(self) -> NarrativeConfig:
        return self.get(self._active_id) or default_config()

    def active_template_set(self, **labels) -> TemplateSet:
        """Defaults overlaid with the active config's overrides."""
        return self.active().template_set(**labels)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_active(self, config_id: str) -> None:
        if self.get(config_id) is None:
            raise KeyError(f"Unknown narrative config: {config_id!r}")
        self._active_id = config_id
        self.save()

    def create(self, name: str, templates: dict[str, str] | None = None) -> NarrativeConfig:
        config = NarrativeConfig(id=uuid.uuid4().hex, name=name, templates=dict(templates or {}))
        _warn_unknown_placeholders(config)
        self._configs.append(config)
        self.save()
        return config

    def update(self, config: NarrativeConfig) -> bool:
        """Replace a stored config; built-in configs are left untouched."""
        for index, existing in enumerate(self._configs):
            if existing.id != config.id:
                continue
            if existing.is_built_in:
                logger.warning("Refusing to modify built-in narrative config %r", config.id)
                return False
            _warn_unknown_placeholders(config)
            self._configs[index] = config
            self.save()
            return True
        return False

    def delete(self, config_id: str) -> bool:
        existing = self.get(config_id)
        if existing is None or existing.is_built_in:
            return False
        self._configs = [c for c in self._configs if c.id != config_id]
        if self._active_id == config_id:
            self._active_id = DEFAULT_CONFIG_ID
        self.save()
        return True

    def reset(self) -> None:
        """Make the built-in defaults active again."""
        self.set_active(DEFAULT_CONFIG_ID)
