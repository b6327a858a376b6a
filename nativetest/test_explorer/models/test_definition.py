"""Models for test definitions parsed from CTest registration files."""

from pydantic import BaseModel, Field


class TestDefinition(BaseModel):
    """Single test declared by an ``add_test`` command."""

    __test__ = False

    name: str = Field(..., description="Test name as declared by the build system")
    executable: str = Field(..., description="Binary that runs this test")
    args: list[str] = Field(
        default_factory=list, description="Arguments passed to the executable"
    )
    working_directory: str | None = Field(
        default=None, description="WORKING_DIRECTORY property"
    )
    test_file: str | None = Field(
        default=None, description="Source file that declares the test"
    )
    test_line: int | None = Field(
        default=None, description="Line of the declaration in test_file"
    )
    test_full_name: str | None = Field(
        default=None, description="Fully-qualified name if distinct from name"
    )
    test_framework: str | None = Field(
        default=None, description="Framework tag (gtest, catch2, unittestpp, ...)"
    )
    labels: list[str] = Field(default_factory=list, description="LABELS property")
    depends: list[str] = Field(
        default_factory=list, description="Names of tests this test depends on"
    )
    disabled: bool = Field(default=False, description="DISABLED property")
    timeout: float | None = Field(
        default=None, description="TIMEOUT property in seconds"
    )

    @property
    def display_name(self) -> str:
        """Canonical name used to build the inventory."""
        return self.test_full_name or self.name


class ParseResult(BaseModel):
    """Outcome of one discovery pass over a build directory."""

    tests: list[TestDefinition] = Field(
        default_factory=list, description="Discovered test definitions"
    )
    errors: list[str] = Field(
        default_factory=list, description="Non-fatal discovery errors"
    )
