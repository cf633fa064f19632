"""Test factories for generating test data."""

from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory

from dotnet_test_explorer.models.result import ParsedOutcome, ProcessResult
from dotnet_test_explorer.models.tree import TestMetadata


class ParsedOutcomeFactory(DataclassFactory[ParsedOutcome]):
    """Factory for ParsedOutcome."""

    __model__ = ParsedOutcome

    test_id = ""
    outcome = "Passed"
    duration_ms = 10.0
    error_message = None
    stack_trace = None
    std_out = None


class ProcessResultFactory(DataclassFactory[ProcessResult]):
    """Factory for ProcessResult."""

    __model__ = ProcessResult

    exit_code = 0
    stdout = ""
    stderr = ""


class TestMetadataFactory(ModelFactory[TestMetadata]):
    """Factory for TestMetadata."""

    __test__ = False

    kind = "method"
    is_parameterized = False
    display_name = ""
