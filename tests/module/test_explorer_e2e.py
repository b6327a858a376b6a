"""End-to-end tests running real processes against a fake build tree."""

import sys
from pathlib import Path

from nativetest.test_explorer.cancellation import CancellationToken
from nativetest.test_explorer.config_loader import load_profiles
from nativetest.test_explorer.models.profile_config import TargetType
from nativetest.test_explorer.orchestrator import RunReporter, TestOrchestrator

FAKE_TEST_BINARY = '''
import pathlib
import sys

out = pathlib.Path(sys.argv[1]) / "output.vsc"
command = sys.argv[2]
if command == "GetTcList:":
    out.write_text("Math::Add,math.cpp,3\\nMath::Sub,math.cpp,9\\nIO::Read,io.cpp,4\\n")
else:
    name = command[len("TC/"):]
    failures = 1 if name == "Math::Sub" else 0
    print(f"running {name}")
    out.write_text(f'<testsuite name="{name}" failures="{failures}"/>')
'''


def _write_ctest_tree(build_dir: Path) -> None:
    python = Path(sys.executable).as_posix()
    (build_dir / "unit").mkdir(parents=True)
    (build_dir / "CTestTestfile.cmake").write_text(
        f"""# CMake generated Testfile for
# Source directory: /src
subdirs("unit")
add_test(smoke "{python}" "-c" "print('smoke ok')")
"""
    )
    (build_dir / "unit" / "CTestTestfile.cmake").write_text(
        f"""add_test([=[Math.Add]=] "{python}" "-c" "raise SystemExit(0)")
set_tests_properties([=[Math.Add]=] PROPERTIES
  WORKING_DIRECTORY "{build_dir.as_posix()}/unit"
  LABELS "math"
)
add_test([=[Math.Sub]=] "{python}" "-c" "raise SystemExit(1)")
add_test(slow "{python}" "-c" "import time; time.sleep(30)")
set_tests_properties(slow PROPERTIES DISABLED ON)
add_test(unit_NOT_BUILT "unit_NOT_BUILT")
"""
    )


async def test_ctest_discovery_and_run(tmp_path: Path) -> None:
    """CTest tests are discovered across directories and run by exit code."""
    build_dir = tmp_path / "build"
    _write_ctest_tree(build_dir)
    config = tmp_path / "explorer.yaml"
    config.write_text('build_directory: "${workspaceFolder}/build"\n')

    profiles = await load_profiles(config, [TargetType.CMAKE], tmp_path)
    orchestrator = TestOrchestrator(profiles[TargetType.CMAKE])

    inventory = await orchestrator.discover()

    assert inventory.errors == []
    assert [item.id for item in inventory.items] == [
        "smoke",
        "Math.Add",
        "Math.Sub",
        "slow",
    ]
    assert list(inventory.fixtures()) == ["default", "Math"]

    reporter = RunReporter()
    outcomes = await orchestrator.run_tests(
        inventory.items, CancellationToken(), reporter
    )

    statuses = {outcome.test_id: outcome.status for outcome in outcomes}
    assert statuses == {
        "smoke": "passed",
        "Math.Add": "passed",
        "Math.Sub": "failed",
        "slow": "skipped",
    }
    assert reporter.outputs["smoke"] == "smoke ok"
    assert reporter.events[-1] == ("end", "")


async def test_executable_discovery_and_run(tmp_path: Path) -> None:
    """Listed tests run one by one and are judged by their result file."""
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    (tmp_path / "fake_test.py").write_text(FAKE_TEST_BINARY)
    config = tmp_path / "explorer.yaml"
    config.write_text(
        f"""
src_directory: "${{workspaceFolder}}"
build_directory: "${{workspaceFolder}}/build"
exe:
  executable: "{Path(sys.executable).as_posix()}"
  test_run_arg_pattern: >-
    ${{executable}} ${{srcDirectory}}/fake_test.py ${{buildDirectory}}
    TC/${{test_full_name}}
  list_test_arg_pattern: >-
    ${{executable}} ${{srcDirectory}}/fake_test.py ${{buildDirectory}} GetTcList:
"""
    )

    profiles = await load_profiles(config, [TargetType.EXECUTABLE], tmp_path)
    orchestrator = TestOrchestrator(profiles[TargetType.EXECUTABLE])

    inventory = await orchestrator.discover()

    assert [item.id for item in inventory.items] == [
        "Math::Add",
        "Math::Sub",
        "IO::Read",
    ]
    assert inventory.items[0].source_file == str(build_dir / "math.cpp")

    selected = inventory.select(["Math"])
    reporter = RunReporter()
    outcomes = await orchestrator.run_tests(selected, CancellationToken(), reporter)

    assert [(o.test_id, o.status) for o in outcomes] == [
        ("Math::Add", "passed"),
        ("Math::Sub", "failed"),
    ]
    assert 'name="Math::Add"' in reporter.outputs["Math::Add"]
    assert "Math::Sub" in (build_dir / "output.vsc").read_text()
