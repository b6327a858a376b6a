"""Parse CTest registration files generated in a build directory."""

import logging
import re
from pathlib import Path

from nativetest.test_explorer.command_line import parse_command_line
from nativetest.test_explorer.models.test_definition import (
    ParseResult,
    TestDefinition,
)

logger = logging.getLogger(__name__)

CTEST_FILE_NAME = "CTestTestfile.cmake"
CONFIGURATION_NAMES = ("Debug", "Release", "RelWithDebInfo", "MinSizeRel")

_ADD_TEST = re.compile(r"^add_test\s*\((.*)\)\s*$")
_SET_PROPERTIES = re.compile(
    r'^set_tests_properties\s*\(\s*("(?:[^"\\]|\\.)*"|\[=*\[.*?\]=*\]|[^\s()]+)'
    r"\s+PROPERTIES\b(.*)$"
)
_DIRECTIVE = re.compile(
    r"^(include|subdirs|add_subdirectory)\s*\(\s*"
    r'(?:"([^"]*)"|\[(=*)\[(.*?)\]\3\]|([^\s()]+))'
)
_QUOTED_OR_BRACKET = re.compile(r'"(?:[^"\\]|\\.)*"|\[(=*)\[.*?\]\1\]')

# value: "quoted" | [==[bracket]==] | bare word
_VALUE = r'(?:"((?:[^"\\]|\\.)*)"|\[(=*)\[(.*?)\]\{n}\]|([^\s")]+))'


def _property_pattern(key: str, group: int = 2) -> re.Pattern[str]:
    return re.compile(rf"\b{key}\s+" + _VALUE.replace("{n}", str(group)))


_PROPERTY_PATTERNS = {
    "WORKING_DIRECTORY": _property_pattern("WORKING_DIRECTORY"),
    "TEST_FILE": _property_pattern("TEST_FILE"),
    "TEST_LINE": _property_pattern("TEST_LINE"),
    "TEST_FULL_NAME": _property_pattern("TEST_FULL_NAME"),
    "TEST_FRAMEWORK": _property_pattern("TEST_FRAMEWORK"),
    "LABELS": _property_pattern("LABELS"),
    "DEPENDS": _property_pattern("DEPENDS"),
    "DISABLED": _property_pattern("DISABLED"),
    "TIMEOUT": _property_pattern("TIMEOUT"),
}

_TRUE_VALUES = {"1", "on", "yes", "true", "y"}


def _closes_block(line: str) -> bool:
    """Return True if ``line`` holds a ``)`` outside quotes and brackets."""
    return ")" in _QUOTED_OR_BRACKET.sub("", line)


def _property_value(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    quoted, _, bracketed, bare = match.groups()
    if quoted is not None:
        return re.sub(r"\\(.)", r"\1", quoted)
    if bracketed is not None:
        return bracketed
    return bare


def _split_list(value: str) -> list[str]:
    return [item for item in value.split(";") if item]


def _apply_properties(test: TestDefinition, text: str) -> None:
    """Write the recognized properties found in ``text`` onto ``test``."""
    value = _property_value(_PROPERTY_PATTERNS["WORKING_DIRECTORY"], text)
    if value is not None:
        test.working_directory = value

    value = _property_value(_PROPERTY_PATTERNS["TEST_FILE"], text)
    if value is not None:
        test.test_file = value

    value = _property_value(_PROPERTY_PATTERNS["TEST_LINE"], text)
    if value is not None and value.strip().isdigit():
        test.test_line = int(value)

    value = _property_value(_PROPERTY_PATTERNS["TEST_FULL_NAME"], text)
    if value is not None:
        test.test_full_name = value

    value = _property_value(_PROPERTY_PATTERNS["TEST_FRAMEWORK"], text)
    if value is not None:
        test.test_framework = value

    value = _property_value(_PROPERTY_PATTERNS["LABELS"], text)
    if value is not None:
        test.labels = _split_list(value)

    # DEPENDS may repeat or list several ids; keep every one of them
    for match in _PROPERTY_PATTERNS["DEPENDS"].finditer(text):
        quoted, _, bracketed, bare = match.groups()
        raw = next(v for v in (quoted, bracketed, bare) if v is not None)
        for dependency in _split_list(raw):
            if dependency not in test.depends:
                test.depends.append(dependency)

    value = _property_value(_PROPERTY_PATTERNS["DISABLED"], text)
    if value is not None:
        test.disabled = value.strip().lower() in _TRUE_VALUES

    value = _property_value(_PROPERTY_PATTERNS["TIMEOUT"], text)
    if value is not None:
        try:
            test.timeout = float(value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric TIMEOUT for {test.name}: {value}")


def parse_ctest_file(file_path: Path) -> list[TestDefinition]:
    """Parse ``add_test`` and ``set_tests_properties`` records of one file.

    Args:
        file_path: Path to a CTest registration file

    Returns:
        Test definitions in declaration order

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not valid UTF-8

    """
    tests: list[TestDefinition] = []
    by_name: dict[str, TestDefinition] = {}
    current: TestDefinition | None = None
    in_properties = False

    content = Path(file_path).read_text(encoding="utf-8")

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if in_properties:
            if current is not None:
                _apply_properties(current, line)
            if _closes_block(line):
                in_properties = False
                current = None
            continue

        add_match = _ADD_TEST.match(line)
        if add_match:
            parts = parse_command_line(add_match.group(1))
            if len(parts) < 2:
                logger.debug(f"Skipping add_test without command in {file_path}")
                continue
            name, executable, *args = parts
            if name.endswith("_NOT_BUILT") and executable == name:
                logger.debug(f"Skipping placeholder test {name}")
                continue
            test = TestDefinition(name=name, executable=executable, args=args)
            tests.append(test)
            by_name[name] = test
            continue

        props_match = _SET_PROPERTIES.match(line)
        if props_match:
            names = parse_command_line(props_match.group(1))
            current = by_name.get(names[0]) if names else None
            rest = props_match.group(2)
            if current is not None:
                _apply_properties(current, rest)
            in_properties = not _closes_block(rest)
            if not in_properties:
                current = None

    return tests


def _directive_target(base_dir: Path, raw: str) -> Path:
    target = Path(raw)
    if not target.is_absolute():
        target = base_dir / target
    if target.is_dir():
        target = target / CTEST_FILE_NAME
    return target


def recursive_include_ctest_file(
    file_path: Path, visited: set[Path] | None = None
) -> list[Path]:
    """Collect ``file_path`` and every file it includes, recursively.

    Follows ``include()``, ``subdirs()`` and ``add_subdirectory()``.
    Relative references are resolved against the including file's
    directory. A file that was already visited is never read again.

    Args:
        file_path: Registration file to start from
        visited: Canonical paths seen so far in this discovery pass

    Returns:
        Discovered files in visiting order, each listed once

    """
    if visited is None:
        visited = set()

    canonical = Path(file_path).resolve()
    if canonical in visited:
        return []
    visited.add(canonical)

    files = [canonical]
    try:
        content = canonical.read_text(encoding="utf-8")
    except (OSError, ValueError) as e:
        logger.warning(f"Cannot read {canonical}: {e}")
        return files

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _DIRECTIVE.match(line)
        if not match:
            continue
        directive, quoted, _, bracketed, bare = match.groups()
        raw = next(v for v in (quoted, bracketed, bare) if v is not None)
        target = _directive_target(canonical.parent, raw)
        if not target.exists():
            logger.debug(f"{directive}() target does not exist: {target}")
            continue
        files.extend(recursive_include_ctest_file(target, visited))

    return files


def find_ctest_files(
    build_directory: Path, build_type: str | None = None
) -> list[Path]:
    """Locate every registration file reachable from a build directory.

    Multi-configuration layouts keep a registration file per configuration
    subdirectory; the one for ``build_type`` is preferred, otherwise all
    conventional configuration names are probed.
    """
    build_directory = Path(build_directory)
    roots: list[Path] = []

    base_file = build_directory / CTEST_FILE_NAME
    if base_file.exists():
        roots.append(base_file)

    config_file = None
    if build_type:
        config_file = build_directory / build_type / CTEST_FILE_NAME
    if config_file is not None and config_file.exists():
        roots.append(config_file)
    else:
        for name in CONFIGURATION_NAMES:
            candidate = build_directory / name / CTEST_FILE_NAME
            if candidate.exists():
                roots.append(candidate)

    visited: set[Path] = set()
    files: list[Path] = []
    for root in roots:
        files.extend(recursive_include_ctest_file(root, visited))
    return files


class CTestParser:
    """Discover test definitions from a build directory."""

    async def parse(
        self, build_directory: Path, build_type: str | None = None
    ) -> ParseResult:
        """Parse every registration file reachable from ``build_directory``.

        Errors are collected in the result; a broken file never stops the
        remaining files from being parsed.
        """
        result = ParseResult()

        ctest_files = find_ctest_files(build_directory, build_type)
        if not ctest_files:
            result.errors.append(f"No CTest files found in {build_directory}")
            return result

        logger.info(f"Parsing {len(ctest_files)} CTest files in {build_directory}")
        for ctest_file in ctest_files:
            try:
                tests = parse_ctest_file(ctest_file)
            except (OSError, ValueError) as e:
                logger.error(f"Error parsing {ctest_file}: {e}")
                result.errors.append(f"Error parsing {ctest_file}: {e}")
                continue
            result.tests.extend(tests)

        logger.info(f"Discovered {len(result.tests)} tests")
        return result
