"""Source configuration loader for the reconciliation engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from eventsync.configs.settings import Settings, get_settings


class Config:
    """Configuration for the reconciliation engine."""

    CONFIG_DIR = Path(__file__).parent.resolve()

    @classmethod
    def load_sources_config(
        cls, path: Path | None = None, settings: Settings | None = None
    ) -> dict[str, Any]:
        """
        Load the YAML configuration describing the sources to crawl.

        Placeholders such as ``${DEFAULT_CITY}`` are substituted from settings
        before parsing.
        """
        settings = settings or get_settings()
        path = Path(path or settings.SOURCES_CONFIG_PATH)
        if not path.exists():
            raise FileNotFoundError(f"Missing sources config at {path}")

        content = path.read_text(encoding="utf-8")
        for key, value in settings.model_dump().items():
            placeholder = f"${{{key}}}"
            if placeholder in content:
                val_str = (
                    value.get_secret_value()
                    if hasattr(value, "get_secret_value")
                    else str(value)
                )
                content = content.replace(placeholder, val_str)

        data = yaml.safe_load(content) or {}
        sources = data.get("sources") or {}
        if not isinstance(sources, dict):
            raise ValueError(f"'sources' in {path} must be a mapping")
        return data
