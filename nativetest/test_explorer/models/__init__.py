"""Data models for test definitions, profiles, and results."""

from nativetest.test_explorer.models.profile_config import (
    CMakeSession,
    ConfigProfile,
    ConfigurationError,
    ExplorerSettings,
    PassPolicy,
    ResultMode,
    TargetSettings,
    TargetType,
)
from nativetest.test_explorer.models.test_definition import (
    ParseResult,
    TestDefinition,
)
from nativetest.test_explorer.models.test_result import (
    ExecutionResult,
    RunState,
    TestOutcome,
)

__all__ = [
    "CMakeSession",
    "ConfigProfile",
    "ConfigurationError",
    "ExecutionResult",
    "ExplorerSettings",
    "ParseResult",
    "PassPolicy",
    "ResultMode",
    "RunState",
    "TargetSettings",
    "TargetType",
    "TestDefinition",
    "TestOutcome",
]
