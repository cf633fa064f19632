"""Parser for TRX (Visual Studio test results) documents.

A TRX file has two sections of interest::

    <TestRun xmlns="http://microsoft.com/schemas/VisualStudio/TeamTest/2010">
      <TestDefinitions>
        <UnitTest id="..."><TestMethod className="N.C" name="M" /></UnitTest>
      </TestDefinitions>
      <Results>
        <UnitTestResult testId="..." testName="M(x: 1)" outcome="Passed"
                        duration="00:00:00.0123456">
          <Output>
            <StdOut>...</StdOut>
            <ErrorInfo><Message>...</Message><StackTrace>...</StackTrace></ErrorInfo>
          </Output>
        </UnitTestResult>
      </Results>
    </TestRun>

Definitions map a test id onto ``className.name``; results carry the
outcome of each executed case in document order.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from dotnet_test_explorer.exceptions import ResultLogParseError
from dotnet_test_explorer.models.result import Outcome, ParsedOutcome

log = logging.getLogger(__name__)

KNOWN_OUTCOMES: frozenset[Outcome] = frozenset(
    ["Passed", "Failed", "NotExecuted", "Skipped"]
)


@dataclass(frozen=True, kw_only=True)
class TrxDocument:
    """A parsed result log."""

    definitions: Mapping[str, str]
    results: Sequence[ParsedOutcome]

    def outcomes(self) -> Iterator[ParsedOutcome]:
        """Iterate outcomes in document order; each call starts over."""
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


def normalize_outcome(raw: str | None) -> Outcome:
    """Map a raw outcome string onto a known outcome.

    Anything unrecognised (``Timeout``, ``Aborted``, ``Inconclusive``...)
    becomes ``NotExecuted`` so it is still reported.
    """
    for outcome in KNOWN_OUTCOMES:
        if raw == outcome:
            return outcome
    if raw:
        log.debug("Normalizing unknown outcome %r to NotExecuted", raw)
    return "NotExecuted"


def parse_duration(duration: str | None) -> float:
    """Parse an ``HH:MM:SS.fffffff`` duration into milliseconds.

    Malformed input yields 0.
    """
    if not duration:
        return 0.0

    parts = duration.split(":")
    if len(parts) != 3:
        return 0.0

    seconds, _, fraction = parts[2].partition(".")
    try:
        whole_seconds = int(parts[0]) * 3600 + int(parts[1]) * 60 + int(seconds)
        fractional = float(f"0.{fraction}") if fraction else 0.0
    except ValueError:
        return 0.0

    return whole_seconds * 1000 + fractional * 1000


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    return (child for child in element if _local_name(child.tag) == name)


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    return next(_children(element, name), None)


def _text(element: ET.Element | None) -> str | None:
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


def _parse_definitions(root: ET.Element) -> dict[str, str]:
    definitions: dict[str, str] = {}
    section = _child(root, "TestDefinitions")
    if section is None:
        return definitions

    for unit_test in _children(section, "UnitTest"):
        test_id = unit_test.get("id")
        method = _child(unit_test, "TestMethod")
        if not test_id or method is None:
            continue
        class_name = method.get("className")
        method_name = method.get("name")
        if class_name and method_name:
            definitions[test_id] = f"{class_name}.{method_name}"
    return definitions


def _parse_result(element: ET.Element, definitions: Mapping[str, str]) -> ParsedOutcome:
    test_id = element.get("testId", "")
    display_name = element.get("testName", "")
    output = _child(element, "Output")
    error_info = _child(output, "ErrorInfo")

    return ParsedOutcome(
        test_id=test_id,
        qualified_name=definitions.get(test_id, display_name),
        display_name=display_name,
        outcome=normalize_outcome(element.get("outcome")),
        duration_ms=parse_duration(element.get("duration")),
        error_message=_text(_child(error_info, "Message")),
        stack_trace=_text(_child(error_info, "StackTrace")),
        std_out=_text(_child(output, "StdOut")),
    )


def parse_trx(content: str | bytes) -> TrxDocument:
    """Parse TRX content.

    Raises:
        ResultLogParseError: If the content is not well-formed TRX

    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ResultLogParseError(f"Malformed result log: {e}") from e

    if _local_name(root.tag) != "TestRun":
        raise ResultLogParseError(
            f"Not a TRX document: root element is <{_local_name(root.tag)}>"
        )

    definitions = _parse_definitions(root)
    section = _child(root, "Results")
    results: list[ParsedOutcome] = []
    if section is not None:
        results = [
            _parse_result(element, definitions)
            for element in _children(section, "UnitTestResult")
        ]
    return TrxDocument(definitions=definitions, results=results)


async def load_trx(path: Path) -> TrxDocument:
    """Read and parse a TRX file without blocking the event loop.

    Raises:
        ResultLogParseError: If the file cannot be read or parsed

    """
    try:
        content = await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        raise ResultLogParseError(f"Cannot read result log {path}: {e}") from e
    return parse_trx(content)
