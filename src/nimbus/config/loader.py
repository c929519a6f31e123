"""Configuration loader for Nimbus project files.

Reads ``nimbus.yaml``, substitutes environment variables, applies command
line overrides and validates the result against ``ProjectConfig``.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from nimbus.config.env_loader import substitute_env_vars
from nimbus.config.validator import flatten_pydantic_errors
from nimbus.lib.errors import ConfigError
from nimbus.lib.logging_config import get_logger
from nimbus.models.project import ProjectConfig

logger = get_logger(__name__)


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file, substituting env vars in the raw text first.

    Raises:
        OSError: If the file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If a referenced variable is not set
    """
    raw_text = path.read_text(encoding="utf-8")
    content = yaml.safe_load(substitute_env_vars(raw_text))
    return content if content else None


class ConfigLoader:
    """Loads and validates project files."""

    def load_project_yaml(
        self,
        file_path: str | Path,
        overrides: dict[str, Any] | None = None,
    ) -> ProjectConfig:
        """Load and validate a project file.

        Args:
            file_path: Path to ``nimbus.yaml``
            overrides: Top-level values that win over the file (``stage``,
                ``region``); None values are ignored

        Returns:
            Validated ProjectConfig

        Raises:
            ConfigError: If the file is missing, unparsable or invalid
        """
        path = Path(file_path)
        try:
            data = _read_yaml_with_env_substitution(path)
        except OSError as e:
            raise ConfigError(
                "project_file",
                f"Project file not found at {file_path}. "
                "Please ensure the file exists at this path.",
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse",
                f"Failed to parse YAML file {file_path}: {e}",
            ) from e

        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError(
                "project_file",
                f"Project file {file_path} must contain a mapping at the top level",
            )

        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value

        try:
            project = ProjectConfig(**data)
        except PydanticValidationError as e:
            error_text = "\n".join(flatten_pydantic_errors(e))
            raise ConfigError(
                "project_validation",
                f"Invalid project configuration in {file_path}:\n{error_text}",
            ) from e

        logger.debug(
            f"Loaded project {project.project} (stage={project.stage}, "
            f"region={project.region}) from {path}"
        )
        return project
