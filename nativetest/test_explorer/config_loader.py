"""Load explorer settings and build profiles from YAML files."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from nativetest.test_explorer.models.profile_config import (
    CMakeSession,
    ConfigProfile,
    ExplorerSettings,
    TargetType,
)


async def load_settings(config_file: Path) -> ExplorerSettings:
    """Load explorer settings from a YAML file.

    Args:
        config_file: Path to the settings file

    Returns:
        Parsed settings

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        ValueError: If YAML is invalid or doesn't match schema

    """
    if not config_file.exists():
        raise FileNotFoundError(f"Settings file not found: {config_file}")

    try:
        with config_file.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_file}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings must be a mapping in {config_file}")

    try:
        return ExplorerSettings.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid settings schema in {config_file}: {e}") from e


async def load_profiles(
    config_file: Path,
    target_types: list[TargetType],
    workspace_folder: Path,
    session: CMakeSession | None = None,
) -> dict[TargetType, ConfigProfile]:
    """Build one profile per requested target type.

    Args:
        config_file: Path to the settings file
        target_types: Target types to build profiles for
        workspace_folder: Workspace root substituted for ``${workspaceFolder}``
        session: Build-system session owned by the CMake profile

    Returns:
        Dictionary mapping target types to their profiles

    Raises:
        ConfigurationError: If a profile's required settings are missing

    """
    settings = await load_settings(config_file)
    profiles: dict[TargetType, ConfigProfile] = {}
    for target_type in target_types:
        profiles[target_type] = ConfigProfile.from_settings(
            settings,
            target_type,
            workspace_folder=str(workspace_folder),
            session=session if target_type == TargetType.CMAKE else None,
        )
    return profiles
