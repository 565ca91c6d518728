"""Parsers that turn raw tool output into structured verification results."""

import json
import re
from typing import Any

from tideflow.verification.models import (
    ErrorSeverity,
    TestFailure,
    TestResult,
    VerificationError,
)

_TSC_ERROR_PATTERN = re.compile(r'(.+)\((\d+),(\d+)\):\s*error\s*(TS\d+):\s*(.+)')

# Untracked paths that are expected to exist in a working tree
EXPECTED_UNTRACKED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'node_modules'),
    re.compile(r'\.env'),
    re.compile(r'dist/'),
    re.compile(r'build/'),
    re.compile(r'coverage/'),
)


def parse_tsc_errors(output: str) -> list[VerificationError]:
    """Parse TypeScript compiler output into structured errors.

    Parses lines matching the pattern: src/file.ts(10,5): error TS2339: Property does not exist

    Args:
        output: Raw tsc stdout/stderr output.

    Returns:
        One VerificationError per matching line; unmatched lines are ignored.
    """
    errors = []
    for line in output.splitlines():
        match = _TSC_ERROR_PATTERN.match(line.strip())
        if match:
            errors.append(VerificationError(
                file=match.group(1),
                line=int(match.group(2)),
                column=int(match.group(3)),
                code=match.group(4),
                message=match.group(5),
                severity=ErrorSeverity.ERROR,
            ))
    return errors


def parse_eslint_output(output: str) -> list[VerificationError]:
    """Flatten ESLint ``--format json`` output into structured errors.

    ESLint severity 2 is an error, anything else a warning.

    Raises:
        ValueError: If the output is not a JSON array of file results
    """
    data = json.loads(output or "[]")
    if not isinstance(data, list):
        raise ValueError("ESLint output is not a JSON array")

    errors = []
    for file_result in data:
        if not isinstance(file_result, dict):
            raise ValueError(f"Unexpected ESLint file result: {file_result!r}")
        file_path = file_result.get("filePath")
        messages = file_result.get("messages") or []
        if not isinstance(messages, list):
            raise ValueError(f"Unexpected ESLint messages for {file_path}: {messages!r}")
        for message in messages:
            if not isinstance(message, dict):
                raise ValueError(f"Unexpected ESLint message: {message!r}")
            errors.append(VerificationError(
                file=file_path,
                line=message.get("line"),
                column=message.get("column"),
                code=message.get("ruleId"),
                message=message.get("message", ""),
                severity=ErrorSeverity.ERROR if message.get("severity") == 2 else ErrorSeverity.WARNING,
            ))
    return errors


def parse_jest_output(output: str) -> TestResult:
    """Parse a Jest ``--json`` summary.

    Raises:
        ValueError: If the output is not a JSON object or its suites are
            malformed (json.JSONDecodeError is a ValueError)
    """
    data: Any = json.loads(output)
    if not isinstance(data, dict):
        raise ValueError("Test output is not a JSON object")

    suites = data.get("testResults") or []
    if not isinstance(suites, list):
        raise ValueError(f"Unexpected testResults: {suites!r}")

    failures = []
    for suite in suites:
        if not isinstance(suite, dict):
            raise ValueError(f"Unexpected test suite result: {suite!r}")
        assertions = suite.get("assertionResults") or []
        if not isinstance(assertions, list):
            raise ValueError(f"Unexpected assertionResults: {assertions!r}")
        for assertion in assertions:
            if not isinstance(assertion, dict):
                raise ValueError(f"Unexpected assertion result: {assertion!r}")
            if assertion.get("status") != "failed":
                continue
            messages = assertion.get("failureMessages") or []
            failures.append(TestFailure(
                name=assertion.get("title", ""),
                error=messages[0] if messages else "Unknown error",
            ))

    return TestResult(
        passed=bool(data.get("success", False)),
        errors=(),
        total=data.get("numTotalTests") or 0,
        passed_count=data.get("numPassedTests") or 0,
        failed=data.get("numFailedTests") or 0,
        failures=tuple(failures),
    )


def is_expected_untracked(path: str) -> bool:
    """Whether an untracked path matches the allow-list."""
    return any(p.search(path) for p in EXPECTED_UNTRACKED_PATTERNS)


def parse_untracked_files(output: str) -> list[str]:
    """Return untracked paths from ``git ls-files`` output that are not expected."""
    return [
        line.strip()
        for line in output.splitlines()
        if line.strip() and not is_expected_untracked(line.strip())
    ]


def parse_coverage_summary(content: str) -> float:
    """Extract ``total.lines.pct`` from an Istanbul coverage summary.

    Raises:
        ValueError: If the content is not JSON or has no numeric line percentage
    """
    data = json.loads(content)
    total = data.get("total") if isinstance(data, dict) else None
    lines = total.get("lines") if isinstance(total, dict) else None
    pct = lines.get("pct") if isinstance(lines, dict) else None
    if isinstance(pct, bool) or not isinstance(pct, (int, float)):
        raise ValueError("Coverage summary has no numeric total.lines.pct")
    return float(pct)
