"""Load named debugger launch configurations."""

import json
import logging
import re
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "Debug Program"

_LINE_COMMENT = re.compile(r"^\s*//.*$", re.MULTILINE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def default_debugger_type(platform: str = sys.platform) -> str:
    """Preferred native debugger type of ``platform``."""
    if platform == "win32":
        return "cppvsdbg"
    if platform == "darwin":
        return "lldb-dap"
    return "cppdbg"


class LaunchConfigurationStore:
    """Named launch configurations, as found in a ``launch.json`` file."""

    def __init__(self, configurations: list[dict[str, Any]] | None = None) -> None:
        """Initialize store with already-parsed configurations."""
        self.configurations = list(configurations or [])

    @classmethod
    def from_file(cls, path: Path) -> "LaunchConfigurationStore":
        """Load configurations from a ``launch.json`` style file.

        Whole-line ``//`` comments and trailing commas are tolerated.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid JSON

        """
        if not path.exists():
            raise FileNotFoundError(f"Launch configuration file not found: {path}")

        text = _LINE_COMMENT.sub("", path.read_text(encoding="utf-8"))
        text = _TRAILING_COMMA.sub(r"\1", text)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {path}")
        configurations = data.get("configurations", [])
        if not isinstance(configurations, list):
            raise ValueError(f"'configurations' must be a list in {path}")

        logger.info(f"Loaded {len(configurations)} launch configurations from {path}")
        return cls([c for c in configurations if isinstance(c, dict)])

    def get_by_name(self, name: str) -> dict[str, Any] | None:
        """Return a copy of the configuration called ``name``, if any."""
        for configuration in self.configurations:
            if configuration.get("name") == name:
                return dict(configuration)
        return None

    def build_launch_config(
        self,
        name: str,
        program: str,
        args: list[str],
        cwd: str,
        env: dict[str, str],
        platform: str = sys.platform,
    ) -> dict[str, Any]:
        """Launch configuration ``name`` with the debuggee injected.

        Falls back to the platform's native debugger when no configuration
        of that name exists. The stored configuration is never modified.
        """
        config = self.get_by_name(name) if name else None
        if config is None:
            if name:
                logger.warning(
                    f"Launch configuration '{name}' not found, using defaults"
                )
            config = {}

        if not config.get("type"):
            config["type"] = default_debugger_type(platform)
        if not config.get("name"):
            config["name"] = DEFAULT_CONFIG_NAME
        if not config.get("request"):
            config["request"] = "launch"
        config.setdefault("stopAtEntry", False)

        config["program"] = program
        config["args"] = list(args)
        config["cwd"] = cwd
        config["env"] = dict(env)
        return config
