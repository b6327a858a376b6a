"""Tests for profile configuration models."""

import pytest

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


def _settings(**overrides: object) -> ExplorerSettings:
    values: dict[str, object] = {
        "src_directory": "/work/src",
        "build_directory": "/work/build",
        "python_exe_path": "/usr/bin/python3",
        "cmake_target": "unit",
        "exe": {"executable": "/work/build/unit_tests"},
        "bin": {"executable": "/work/build/unit_bin"},
    }
    values.update(overrides)
    return ExplorerSettings.model_validate(values)


def test_settings_defaults() -> None:
    """ExplorerSettings provides a template for every target type."""
    settings = ExplorerSettings()

    assert settings.exe.test_run_arg_pattern == "${executable} TC/${test_full_name}"
    assert settings.exe.list_test_arg_pattern == "${executable} GetTcList:"
    assert settings.cmake.test_run_arg_pattern is None
    assert settings.cmake.test_run_use_file is False
    assert settings.primary.result_file == "${buildDirectory}/output.vsc"
    assert settings.pass_policy == PassPolicy.SUCCESS_PATTERN


def test_settings_split_lib_paths() -> None:
    """A ';'-separated lib_paths string is split into a list."""
    settings = ExplorerSettings.model_validate({"lib_paths": "/a;;/b"})

    assert settings.lib_paths == ["/a", "/b"]


def test_from_settings_executable_profile() -> None:
    """An executable profile resolves its run and list commands."""
    profile = ConfigProfile.from_settings(_settings(), TargetType.EXECUTABLE)

    assert profile.executable == "/work/build/unit_tests"
    assert profile.test_run_result_mode == ResultMode.RESULT_FILE
    assert profile.use_ctest_discovery is False
    assert profile.test_run_args({"test_full_name": "Math::Add"}) == [
        "/work/build/unit_tests",
        "TC/Math::Add",
    ]
    assert profile.list_test_args() == ["/work/build/unit_tests", "GetTcList:"]
    assert profile.resolved_result_file == "/work/build/output.vsc"


def test_from_settings_primary_profile() -> None:
    """The primary profile runs through the Python interpreter."""
    profile = ConfigProfile.from_settings(_settings(), TargetType.PRIMARY)

    assert profile.list_test_args() == [
        "/usr/bin/python3",
        "-m",
        "cdoctest",
        "--cdt_cmake_build_path=/work/build",
        "--cdt_cmake_target=unit",
        "--cdt_list_testcase",
        "--cdt_output_xml=/work/build/output.vsc",
    ]


def test_from_settings_quoted_executable_with_spaces() -> None:
    """A quoted placeholder keeps a path with spaces in one argument."""
    settings = _settings(
        exe=TargetSettings(
            executable="/opt/my tests/unit",
            test_run_arg_pattern='"${executable}" TC/${test_full_name}',
        )
    )

    profile = ConfigProfile.from_settings(settings, TargetType.EXECUTABLE)

    assert profile.test_run_args({"test_full_name": "A::b"}) == [
        "/opt/my tests/unit",
        "TC/A::b",
    ]


def test_from_settings_nested_placeholders() -> None:
    """Directories may reference other placeholders."""
    settings = _settings(build_directory="${workspaceFolder}/build")

    profile = ConfigProfile.from_settings(
        settings, TargetType.EXECUTABLE, workspace_folder="/ws"
    )

    assert profile.resolved_build_directory == "/ws/build"
    assert profile.resolved_result_file == "/ws/build/output.vsc"


def test_from_settings_self_referencing_directory() -> None:
    """A directory mentioning itself resolves without recursion."""
    settings = _settings(build_directory="${buildDirectory}/x")

    profile = ConfigProfile.from_settings(settings, TargetType.EXECUTABLE)

    assert profile.resolved_build_directory == "${buildDirectory}/x"


def test_from_settings_requires_directories() -> None:
    """Explicit mode needs both source and build directories."""
    with pytest.raises(ConfigurationError, match="must be set"):
        ConfigProfile.from_settings(
            _settings(src_directory=""), TargetType.EXECUTABLE
        )


def test_from_settings_requires_executable() -> None:
    """Explicit mode needs an executable for exe and bin targets."""
    with pytest.raises(ConfigurationError, match="bin executable must be set"):
        ConfigProfile.from_settings(_settings(bin={}), TargetType.BINARY)


def test_from_settings_requires_python() -> None:
    """The primary profile needs a Python interpreter."""
    with pytest.raises(ConfigurationError, match="python_exe_path"):
        ConfigProfile.from_settings(_settings(python_exe_path=""), TargetType.PRIMARY)


def test_from_settings_cmake_target_rejects_directories() -> None:
    """CMake target mode takes directories from the build system only."""
    with pytest.raises(ConfigurationError, match="must be empty"):
        ConfigProfile.from_settings(
            _settings(use_cmake_target=True), TargetType.EXECUTABLE
        )


def test_from_settings_cmake_target_rejects_executable() -> None:
    """CMake target mode takes the executable from the build system only."""
    settings = _settings(use_cmake_target=True, src_directory="", build_directory="")

    with pytest.raises(ConfigurationError, match="executable must be empty"):
        ConfigProfile.from_settings(settings, TargetType.EXECUTABLE)


def test_from_settings_invalid_success_regex() -> None:
    """An invalid success pattern is rejected."""
    with pytest.raises(ConfigurationError, match="Invalid result_success_regex"):
        ConfigProfile.from_settings(
            _settings(result_success_regex="("), TargetType.EXECUTABLE
        )


def test_from_settings_cmake_without_build_directory() -> None:
    """A CMake profile needs a build directory or a session."""
    with pytest.raises(ConfigurationError, match="cmake profile needs"):
        ConfigProfile.from_settings(
            ExplorerSettings(use_ctest_discovery=True), TargetType.CMAKE
        )


def test_from_settings_cmake_session() -> None:
    """A CMake profile takes its paths from the session."""
    session = CMakeSession(
        build_directory="/work/build",
        source_directory="/work/src",
        build_type="Debug",
        target_name="unit",
        launch_target_path="/work/build/Debug/unit",
    )

    profile = ConfigProfile.from_settings(
        ExplorerSettings(), TargetType.CMAKE, session=session
    )

    assert profile.build_directory == "/work/build"
    assert profile.src_directory == "/work/src"
    assert profile.cmake_build_type == "Debug"
    assert profile.cmake_target == "unit"
    assert profile.executable == "/work/build/Debug/unit"
    assert profile.use_ctest_discovery is True
    assert profile.test_run_result_mode == ResultMode.CAPTURED_OUTPUT
    assert profile.test_run_args({"test_full_name": "x"}) is None


def test_from_settings_sessions_not_shared() -> None:
    """Every profile gets its own copy of the configured session."""
    settings = ExplorerSettings(
        use_cmake_target=True,
        python_exe_path="/usr/bin/python3",
        cmake_session=CMakeSession(
            build_directory="/b", launch_target_path="/b/unit"
        ),
    )

    exe = ConfigProfile.from_settings(settings, TargetType.EXECUTABLE)
    primary = ConfigProfile.from_settings(settings, TargetType.PRIMARY)

    assert exe.session == primary.session
    assert exe.session is not primary.session
    assert exe.session is not settings.cmake_session
    assert exe.executable == "/b/unit"
    assert primary.executable == "/usr/bin/python3"
    assert exe.resolved_build_directory == "/b"


def test_profile_windows_normalizes_executable_only() -> None:
    """On Windows only the executable gets native separators."""
    profile = ConfigProfile(
        target_type=TargetType.EXECUTABLE,
        executable="C:/proj/build/unit.exe",
        test_run_arg_pattern="${executable} --out=C:/tmp/x TC/${test_full_name}",
        platform="win32",
    )

    assert profile.test_run_args({"test_full_name": "A::b"}) == [
        "C:\\proj\\build\\unit.exe",
        "--out=C:/tmp/x",
        "TC/A::b",
    ]


def test_profile_resolved_lib_paths() -> None:
    """Library paths are expanded against the profile."""
    settings = _settings(lib_paths=["${buildDirectory}/lib", "/opt/lib"])

    profile = ConfigProfile.from_settings(settings, TargetType.EXECUTABLE)

    assert profile.resolved_lib_paths == ["/work/build/lib", "/opt/lib"]
