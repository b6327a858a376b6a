"""Turn discovery output into a fixture-grouped test inventory."""

import logging
import os
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from nativetest.test_explorer.models.test_definition import TestDefinition

logger = logging.getLogger(__name__)

DEFAULT_FIXTURE = "default"
LIST_SEPARATORS = ("::",)
CTEST_SEPARATORS = ("::", ".")


class TestItem(BaseModel):
    """One runnable test as shown to the caller."""

    __test__ = False

    id: str = Field(..., description="Unique, fully-qualified test id")
    label: str = Field(..., description="Case name within its fixture")
    fixture: str = Field(..., description="Grouping prefix of the id")
    source_file: str | None = Field(default=None, description="Declaring file")
    source_line: int | None = Field(default=None, description="Declaring line")
    definition: TestDefinition | None = Field(
        default=None, description="CTest definition the item was built from"
    )


class Inventory(BaseModel):
    """Result of one discovery pass; replaces the previous inventory."""

    items: list[TestItem] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def fixtures(self) -> dict[str, list[TestItem]]:
        """Group items by fixture, keeping discovery order."""
        groups: dict[str, list[TestItem]] = {}
        for item in self.items:
            groups.setdefault(item.fixture, []).append(item)
        return groups

    def select(self, ids: Iterable[str]) -> list[TestItem]:
        """Items matching ``ids`` (test or fixture ids), in discovery order."""
        wanted = set(ids)
        return [
            item for item in self.items if item.id in wanted or item.fixture in wanted
        ]


def split_fixture(
    name: str, separators: Sequence[str] = LIST_SEPARATORS
) -> tuple[str, str]:
    """Split ``name`` into fixture and case on the last separator.

    The first separator in ``separators`` that occurs in ``name`` is used.
    Names without any separator belong to the ``default`` fixture.

    >>> split_fixture("A::B::C")
    ('A::B', 'C')
    """
    for separator in separators:
        index = name.rfind(separator)
        if index != -1:
            fixture = name[:index].strip()
            case = name[index + len(separator) :].strip()
            return fixture, case
    return DEFAULT_FIXTURE, name.strip()


def parse_test_list(text: str, build_directory: str | None = None) -> list[TestItem]:
    """Parse ``<qualified-name>,<source-file>,<source-line>`` lines.

    Lines without a comma are ignored. Relative source files are taken
    relative to ``build_directory``. A name listed twice keeps its last
    location.
    """
    items: dict[str, TestItem] = {}
    for line in text.splitlines():
        if "," not in line:
            continue
        fields = [field.strip() for field in line.split(",")]
        qualified = fields[0]
        if not qualified:
            continue
        source_file = fields[1] if len(fields) > 1 and fields[1] else None
        raw_line = fields[2] if len(fields) > 2 else ""

        if source_file and build_directory and not os.path.isabs(source_file):
            source_file = os.path.join(build_directory, source_file)

        fixture, case = split_fixture(qualified)
        items[qualified] = TestItem(
            id=qualified,
            label=case,
            fixture=fixture,
            source_file=source_file,
            source_line=int(raw_line) if raw_line.isdigit() else None,
        )

    logger.info(f"Parsed {len(items)} tests from test list output")
    return list(items.values())


def items_from_definitions(definitions: Iterable[TestDefinition]) -> list[TestItem]:
    """Build inventory items from CTest definitions."""
    items: dict[str, TestItem] = {}
    for definition in definitions:
        fixture, case = split_fixture(definition.display_name, CTEST_SEPARATORS)
        items[definition.name] = TestItem(
            id=definition.name,
            label=case,
            fixture=fixture,
            source_file=definition.test_file,
            source_line=definition.test_line,
            definition=definition,
        )
    return list(items.values())
