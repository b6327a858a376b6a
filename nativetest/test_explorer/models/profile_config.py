"""Configuration models for test discovery and execution profiles."""

import re
import sys
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nativetest.test_explorer.command_line import parse_command_line
from nativetest.test_explorer.template_resolver import (
    TemplateResolver,
    normalize_separators,
)

DEFAULT_RESULT_FILE = "${buildDirectory}/output.vsc"
DEFAULT_SUCCESS_REGEX = r'failures="0"'


class ConfigurationError(ValueError):
    """Raised when a profile cannot be built from the given settings."""


class TargetType(str, Enum):
    """Kind of target a profile discovers and runs tests for."""

    PRIMARY = "primary"
    EXECUTABLE = "exe"
    BINARY = "bin"
    CMAKE = "cmake"


class ResultMode(str, Enum):
    """How a run delivers its result text."""

    CAPTURED_OUTPUT = "captured-output"
    RESULT_FILE = "result-file"


class PassPolicy(str, Enum):
    """How pass/fail is derived from an execution result."""

    EXIT_CODE = "exit-code"
    SUCCESS_PATTERN = "success-pattern"


class TargetSettings(BaseModel):
    """Per-target-type settings."""

    executable: str = Field(default="", description="Test executable path")
    test_run_arg_pattern: str | None = Field(
        default=None, description="Command template used to run one test"
    )
    list_test_arg_pattern: str | None = Field(
        default=None, description="Command template used to list tests"
    )
    result_file: str = Field(
        default=DEFAULT_RESULT_FILE, description="File the test binary writes"
    )
    test_run_use_file: bool = Field(
        default=True, description="Read run results from result_file"
    )
    list_test_use_file: bool = Field(
        default=True, description="Read the test list from result_file"
    )


def _default_primary() -> TargetSettings:
    base = (
        "${pythonExePath} -m cdoctest --cdt_cmake_build_path=${buildDirectory}"
        " --cdt_cmake_target=${cmakeTarget}"
    )
    return TargetSettings(
        test_run_arg_pattern=(
            base + " --cdt_run_testcase=${test_full_name}"
            " --cdt_output_xml=" + DEFAULT_RESULT_FILE
        ),
        list_test_arg_pattern=(
            base + " --cdt_list_testcase --cdt_output_xml=" + DEFAULT_RESULT_FILE
        ),
    )


def _default_executable() -> TargetSettings:
    return TargetSettings(
        test_run_arg_pattern="${executable} TC/${test_full_name}",
        list_test_arg_pattern="${executable} GetTcList:",
    )


def _default_cmake() -> TargetSettings:
    return TargetSettings(
        list_test_arg_pattern="${executable} GetTcList:",
        test_run_use_file=False,
        list_test_use_file=False,
    )


class CMakeSession(BaseModel):
    """Handle on an active configure/build project."""

    model_config = ConfigDict(frozen=True)

    build_directory: str = Field(..., description="Configured build directory")
    source_directory: str = Field(default="", description="Project source root")
    build_type: str | None = Field(default=None, description="Active configuration")
    target_name: str = Field(default="", description="Active launch target name")
    launch_target_path: str = Field(
        default="", description="Path to the active launch target binary"
    )


class ExplorerSettings(BaseModel):
    """User settings shared by every profile of a workspace."""

    python_exe_path: str = Field(default="", description="Python interpreter path")
    src_directory: str = Field(default="", description="Project source directory")
    build_directory: str = Field(default="", description="Project build directory")
    use_cmake_target: bool = Field(
        default=False, description="Take directories and target from CMake"
    )
    lib_paths: list[str] = Field(
        default_factory=list, description="Dynamic library search paths"
    )
    result_success_regex: str = Field(
        default=DEFAULT_SUCCESS_REGEX, description="Pattern marking a passed run"
    )
    pass_policy: PassPolicy = Field(
        default=PassPolicy.SUCCESS_PATTERN, description="Pass/fail policy"
    )
    debug_config_name: str = Field(
        default="", description="Launch configuration used for debugging"
    )
    test_timeout: float | None = Field(
        default=None, description="Per-test timeout in seconds"
    )
    use_ctest_discovery: bool = Field(
        default=True, description="Discover CMake tests from CTest files"
    )
    ctest_use_exit_code: bool = Field(
        default=True, description="Judge CTest-discovered tests by exit code"
    )
    cmake_build_type: str | None = Field(
        default=None, description="Configuration of multi-config builds"
    )
    cmake_target: str = Field(default="", description="CMake target name")
    primary: TargetSettings = Field(default_factory=_default_primary)
    exe: TargetSettings = Field(default_factory=_default_executable)
    bin: TargetSettings = Field(default_factory=_default_executable)
    cmake: TargetSettings = Field(default_factory=_default_cmake)
    cmake_session: CMakeSession | None = Field(
        default=None, description="Build-system session, when not using CMake"
    )

    @field_validator("lib_paths", mode="before")
    @classmethod
    def _split_lib_paths(cls, value: object) -> object:
        if isinstance(value, str):
            return [path for path in value.split(";") if path]
        return value


def _target_settings(
    settings: ExplorerSettings, target_type: TargetType
) -> TargetSettings:
    if target_type == TargetType.PRIMARY:
        return settings.primary
    elif target_type == TargetType.EXECUTABLE:
        return settings.exe
    elif target_type == TargetType.BINARY:
        return settings.bin
    return settings.cmake


def _result_mode(use_file: bool) -> ResultMode:
    return ResultMode.RESULT_FILE if use_file else ResultMode.CAPTURED_OUTPUT


class ConfigProfile(BaseModel):
    """Resolved bundle of paths and templates for one target type.

    Immutable for the duration of a discovery or run cycle. Built once per
    workspace activation with :meth:`from_settings`.
    """

    model_config = ConfigDict(frozen=True)

    target_type: TargetType
    workspace_folder: str = ""
    build_directory: str = ""
    src_directory: str = ""
    executable: str = ""
    python_exe_path: str = ""
    cmake_target: str = ""
    cmake_build_type: str | None = None
    test_run_arg_pattern: str | None = None
    list_test_arg_pattern: str | None = None
    result_file: str = DEFAULT_RESULT_FILE
    result_success_regex: str = DEFAULT_SUCCESS_REGEX
    test_run_result_mode: ResultMode = ResultMode.RESULT_FILE
    list_result_mode: ResultMode = ResultMode.RESULT_FILE
    pass_policy: PassPolicy = PassPolicy.SUCCESS_PATTERN
    ctest_use_exit_code: bool = True
    use_cmake_target: bool = False
    use_ctest_discovery: bool = False
    lib_paths: tuple[str, ...] = ()
    debug_config_name: str = ""
    test_timeout: float | None = None
    session: CMakeSession | None = None
    platform: str = sys.platform

    @classmethod
    def from_settings(
        cls,
        settings: ExplorerSettings,
        target_type: TargetType,
        workspace_folder: str = "",
        session: CMakeSession | None = None,
    ) -> "ConfigProfile":
        """Build a profile for ``target_type``.

        Raises:
            ConfigurationError: If a path or executable required by the
                active mode is missing, or the success pattern is invalid

        """
        _validate(settings, target_type)
        target = _target_settings(settings, target_type)
        if session is None and settings.cmake_session is not None:
            # each profile owns its own session handle
            session = settings.cmake_session.model_copy()

        build_directory = settings.build_directory
        src_directory = settings.src_directory
        cmake_target = settings.cmake_target
        build_type = settings.cmake_build_type
        if target_type == TargetType.PRIMARY:
            executable = settings.python_exe_path
        else:
            executable = target.executable

        if settings.use_cmake_target or target_type == TargetType.CMAKE:
            if session is not None:
                build_directory = build_directory or session.build_directory
                src_directory = src_directory or session.source_directory
                cmake_target = cmake_target or session.target_name
                build_type = build_type or session.build_type
                if target_type != TargetType.PRIMARY:
                    executable = executable or session.launch_target_path
            elif not settings.use_cmake_target and not build_directory:
                raise ConfigurationError(
                    "cmake profile needs build_directory or a CMake session"
                )

        return cls(
            target_type=target_type,
            workspace_folder=workspace_folder,
            build_directory=build_directory,
            src_directory=src_directory,
            executable=executable,
            python_exe_path=settings.python_exe_path,
            cmake_target=cmake_target,
            cmake_build_type=build_type,
            test_run_arg_pattern=target.test_run_arg_pattern,
            list_test_arg_pattern=target.list_test_arg_pattern,
            result_file=target.result_file,
            result_success_regex=settings.result_success_regex,
            test_run_result_mode=_result_mode(target.test_run_use_file),
            list_result_mode=_result_mode(target.list_test_use_file),
            pass_policy=settings.pass_policy,
            ctest_use_exit_code=settings.ctest_use_exit_code,
            use_cmake_target=settings.use_cmake_target,
            use_ctest_discovery=(
                target_type == TargetType.CMAKE and settings.use_ctest_discovery
            ),
            lib_paths=tuple(settings.lib_paths),
            debug_config_name=settings.debug_config_name,
            test_timeout=settings.test_timeout,
            session=session,
        )

    def placeholder_values(self) -> dict[str, str]:
        """Raw values of the well-known placeholders."""
        return {
            "buildDirectory": self.build_directory,
            "srcDirectory": self.src_directory,
            "workspaceFolder": self.workspace_folder,
            "cmakeTarget": self.cmake_target,
            "pythonExePath": self.python_exe_path,
            "executable": self.executable,
        }

    def resolver(self) -> TemplateResolver:
        """Return a resolver bound to this profile's values."""
        return TemplateResolver(self.placeholder_values(), platform=self.platform)

    @property
    def resolved_build_directory(self) -> str:
        """Build directory with placeholders expanded."""
        return self.resolver().resolve_value("buildDirectory")

    @property
    def resolved_src_directory(self) -> str:
        """Source directory with placeholders expanded."""
        return self.resolver().resolve_value("srcDirectory")

    @property
    def resolved_executable(self) -> str:
        """Executable path with placeholders expanded."""
        return self.resolver().resolve_value("executable")

    @property
    def resolved_result_file(self) -> str:
        """Result file path with placeholders expanded."""
        return self.resolver().resolve(self.result_file)

    @property
    def resolved_lib_paths(self) -> list[str]:
        """Library search paths with placeholders expanded."""
        resolver = self.resolver()
        return [resolver.resolve(path) for path in self.lib_paths]

    def test_run_args(self, bindings: dict[str, str]) -> list[str] | None:
        """Command line that runs one test, or None without a run pattern."""
        if not self.test_run_arg_pattern:
            return None
        return self._command_line(self.test_run_arg_pattern, bindings)

    def list_test_args(self) -> list[str] | None:
        """Command line that lists tests, or None without a list pattern."""
        if not self.list_test_arg_pattern:
            return None
        return self._command_line(self.list_test_arg_pattern, {})

    def _command_line(self, pattern: str, bindings: dict[str, str]) -> list[str]:
        resolved = self.resolver().resolve(pattern, bindings, normalize=False)
        parts = parse_command_line(resolved)
        if parts:
            parts[0] = normalize_separators(parts[0], self.platform)
        return parts


def _validate(settings: ExplorerSettings, target_type: TargetType) -> None:
    """Check the settings required by the active mode are present."""
    if target_type == TargetType.PRIMARY and not settings.python_exe_path:
        raise ConfigurationError("python_exe_path must be set")

    target = _target_settings(settings, target_type)

    if settings.use_cmake_target:
        if settings.src_directory or settings.build_directory:
            raise ConfigurationError(
                "src_directory and build_directory must be empty "
                "when use_cmake_target is true"
            )
        if target_type != TargetType.PRIMARY and target.executable:
            raise ConfigurationError(
                "executable must be empty when use_cmake_target is true"
            )
    elif target_type != TargetType.CMAKE:
        if not settings.src_directory or not settings.build_directory:
            raise ConfigurationError(
                "src_directory and build_directory must be set "
                "when use_cmake_target is false"
            )
        if target_type != TargetType.PRIMARY and not target.executable:
            raise ConfigurationError(
                f"{target_type.value} executable must be set "
                "when use_cmake_target is false"
            )

    try:
        re.compile(settings.result_success_regex)
    except re.error as e:
        raise ConfigurationError(
            f"Invalid result_success_regex {settings.result_success_regex!r}: {e}"
        ) from e
