"""Configuration loading and validation for Nimbus projects.

Main components:
- ConfigLoader (nimbus.config.loader): load and validate nimbus.yaml files
- Backend profile: ~/.nimbusrc naming the state bucket
- Environment variable substitution (${VAR_NAME} pattern)
- Default values and poll policies
"""

from nimbus.config.backend import (
    BackendProfile,
    get_profile_path,
    load_backend_profile,
    save_backend_profile,
)
from nimbus.config.env_loader import get_env_var, substitute_env_vars

__all__ = [
    "BackendProfile",
    "get_env_var",
    "get_profile_path",
    "load_backend_profile",
    "save_backend_profile",
    "substitute_env_vars",
]
