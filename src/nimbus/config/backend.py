"""State backend profile (``~/.nimbusrc``).

The profile names the S3 bucket and region holding every project's state
document and lock marker. It is written by ``nimbus init``.
"""

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from nimbus.config.defaults import BACKEND_PROFILE_ENV, BACKEND_PROFILE_NAME
from nimbus.config.validator import flatten_pydantic_errors
from nimbus.lib.errors import ConfigError

_INIT_HINT = 'Please run "nimbus init" to configure the S3 state backend.'


class BackendProfile(BaseModel):
    """Location of the remote state store."""

    model_config = ConfigDict(extra="ignore")

    bucket: str = Field(..., min_length=1, description="S3 bucket for state")
    region: str = Field(..., min_length=1, description="Region of the bucket")


def get_profile_path() -> Path:
    """Return the profile path, honouring ``NIMBUS_CONFIG``."""
    override = os.environ.get(BACKEND_PROFILE_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / BACKEND_PROFILE_NAME


def load_backend_profile(path: Path | None = None) -> BackendProfile:
    """Load the backend profile.

    Raises:
        ConfigError: If the profile is missing, unreadable or incomplete
    """
    profile_path = path or get_profile_path()
    if not profile_path.exists():
        raise ConfigError(
            "backend",
            f"Nimbus requires S3 state storage and no profile was found at "
            f"{profile_path}. {_INIT_HINT}",
        )

    try:
        data = json.loads(profile_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(
            "backend", f"Failed to read {profile_path}: {e}. {_INIT_HINT}"
        ) from e

    try:
        return BackendProfile.model_validate(data)
    except PydanticValidationError as e:
        details = "; ".join(flatten_pydantic_errors(e))
        raise ConfigError(
            "backend",
            f"Invalid profile {profile_path} (missing bucket or region): "
            f"{details}. {_INIT_HINT}",
        ) from e


def save_backend_profile(profile: BackendProfile, path: Path | None = None) -> Path:
    """Write the backend profile and return its path."""
    profile_path = path or get_profile_path()
    try:
        profile_path.parent.mkdir(parents=True, exist_ok=True)
        profile_path.write_text(
            json.dumps(profile.model_dump(mode="json"), indent=2), encoding="utf-8"
        )
    except OSError as e:
        raise ConfigError(
            "backend", f"Failed to write profile to {profile_path}: {e}"
        ) from e
    return profile_path
