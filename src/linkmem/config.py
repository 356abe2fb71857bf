"""Configuration loading from environment variables and linkmem.toml."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from linkmem.memory.codec import validate_custom_fields

_DEFAULT_HOME = Path.home() / ".linkmem"
_CONFIG_FILENAME = "linkmem.toml"


@dataclass
class LinkmemConfig:
    """Top-level linkmem configuration."""

    store_dir: Path = _DEFAULT_HOME / "memories"
    index_dir: Path = _DEFAULT_HOME / "index"
    log_level: str = "INFO"
    review_after_days: int = 90
    # category -> default header fields applied when a memory is written
    templates: dict[str, dict[str, Any]] = field(default_factory=dict)

    def template_for(self, category: str) -> dict[str, Any]:
        return dict(self.templates.get(category, {}))


def _load_templates(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    templates: dict[str, dict[str, Any]] = {}
    for category, fields in data.items():
        if not isinstance(fields, dict):
            continue
        validate_custom_fields(fields, context=category)
        templates[category] = dict(fields)
    return templates


def load_config(config_path: Path | None = None) -> LinkmemConfig:
    """Load configuration from environment variables and optional linkmem.toml.

    Priority: environment variables > linkmem.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.linkmem/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    defaults = LinkmemConfig()
    store_dir = os.getenv("LINKMEM_STORE_DIR", file_data.get("store_dir"))
    index_dir = os.getenv("LINKMEM_INDEX_DIR", file_data.get("index_dir"))

    config = LinkmemConfig(
        store_dir=Path(store_dir).expanduser() if store_dir else defaults.store_dir,
        index_dir=Path(index_dir).expanduser() if index_dir else defaults.index_dir,
        log_level=os.getenv("LINKMEM_LOG_LEVEL", file_data.get("log_level", "INFO")),
        review_after_days=int(
            os.getenv("LINKMEM_REVIEW_DAYS", file_data.get("review_after_days", 90))
        ),
        templates=_load_templates(file_data.get("templates", {})),
    )
    return config
