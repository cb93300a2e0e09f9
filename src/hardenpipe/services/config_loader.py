"""Configuration loader for HardenPipe."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from hardenpipe.errors import ConfigurationError
from hardenpipe.settings import PipelineSettings


class ConfigLoader:
    """Reads the YAML file that supplies defaults for CLI options.

    Keys may be spelled like the options (``image-tag``) or like the
    settings fields (``image_tag``).
    """

    SUPPORTED_KEYS = frozenset(PipelineSettings.field_names())

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}", kind="MissingSetting")

        try:
            with path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}", kind="InvalidSetting") from exc

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ConfigurationError(
                f"Config file '{config_path}' must contain a YAML mapping at the root.", kind="InvalidSetting"
            )

        values = {str(key).replace("-", "_"): value for key, value in document.items()}
        unknown = sorted(set(values) - self.SUPPORTED_KEYS)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys in '{config_path}': {', '.join(unknown)}", kind="InvalidSetting"
            )
        return values
