"""Expand ``${placeholder}`` tokens in configuration strings."""

import logging
import sys
from collections.abc import Mapping

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKER = "${"
MAX_PASSES = 4

WELL_KNOWN_PLACEHOLDERS = (
    "buildDirectory",
    "srcDirectory",
    "workspaceFolder",
    "cmakeTarget",
    "pythonExePath",
    "executable",
)


def normalize_separators(text: str, platform: str = sys.platform) -> str:
    """Convert path separators to the native form of ``platform``."""
    if platform == "win32":
        return text.replace("/", "\\")
    return text.replace("\\", "/")


def has_unresolved(text: str) -> bool:
    """Return True when ``text`` still contains a placeholder marker."""
    return PLACEHOLDER_MARKER in text


class TemplateResolver:
    """Resolve placeholders against a profile's own values.

    ``values`` maps well-known placeholder names (``buildDirectory``,
    ``srcDirectory``, ...) to their raw, possibly templated, values. A
    value may reference other placeholders; nesting is resolved over at
    most ``MAX_PASSES`` passes.
    """

    def __init__(
        self, values: Mapping[str, str], platform: str = sys.platform
    ) -> None:
        """Initialize resolver with placeholder values and target platform."""
        self.values = dict(values)
        self.platform = platform
        self._skip: list[str] = []

    def resolve(
        self,
        text: str,
        bindings: Mapping[str, str] | None = None,
        normalize: bool = True,
    ) -> str:
        """Expand ``text``.

        Args:
            text: Template string
            bindings: Per-invocation values substituted before the profile's
                own placeholders (e.g. ``test_case_name``)
            normalize: Convert path separators for the target platform

        Returns:
            Expanded string. Unknown placeholders are left verbatim.

        """
        result = text
        for key, value in (bindings or {}).items():
            result = result.replace(f"${{{key}}}", value)

        for _ in range(MAX_PASSES):
            if PLACEHOLDER_MARKER not in result:
                break
            for key in WELL_KNOWN_PLACEHOLDERS:
                if key in self._skip:
                    continue
                value = self.values.get(key)
                if value is None:
                    continue
                result = result.replace(f"${{{key}}}", value)

        if normalize:
            result = normalize_separators(result, self.platform)
        return result

    def resolve_value(self, key: str, normalize: bool = True) -> str:
        """Resolve the value of placeholder ``key`` itself.

        ``key`` is excluded from substitution for the duration of the call
        so a value that mentions its own placeholder cannot expand forever.
        """
        raw = self.values.get(key, "")
        self._skip.append(key)
        try:
            return self.resolve(raw, normalize=normalize)
        finally:
            self._skip.pop()
