"""Workflow gates for Tideflow.

Gates are the checkpoints between workflow phases. Each gate validates the
output of one phase and either lets the workflow advance or blocks it:

1. Plan: the execution plan is complete
2. Audit: the auditor approved the plan
3. Execution: execution ran cleanly and created files parse
4. Documentation: changelog and checklist were updated consistently
5. Full verification: the verification pipeline passes

Gates return GateResult(passed=False, issues=[...]) for validation failures
and never raise for them. Collaborator exceptions propagate.

This module is headless - no UI or editor dependencies.
"""

import ast
import asyncio
import copy
import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

import tree_sitter_javascript as tsjs
import tree_sitter_typescript as tstype
import yaml
from tree_sitter import Language, Parser

from tideflow.core.documents import DocumentValidator
from tideflow.core.models import (
    AuditApproval,
    AuditReport,
    DocumentationResult,
    ExecutionPlan,
    TaskResult,
)
from tideflow.verification.models import VerificationReport
from tideflow.verification.self_correction import Verifier

logger = logging.getLogger(__name__)

GATE_NUMBERS = (1, 2, 3, 4, 5)
MIN_OBJECTIVE_LENGTH = 10


@dataclass(frozen=True)
class GateResult:
    """Result of one gate invocation.

    Attributes:
        passed: Whether the workflow may advance
        issues: Human-readable problems (non-blocking when auto_fixed)
        auto_fixed: Set when a conditional audit was accepted as auto-fixable
        report: Verification report (gate 5 only)
    """

    passed: bool
    issues: tuple[str, ...] = ()
    auto_fixed: Optional[bool] = None
    report: Optional[VerificationReport] = None


@dataclass
class GateCounter:
    attempts: int = 0
    passed: int = 0
    failed: int = 0


@dataclass
class GateStats:
    """Cumulative gate counters for one enforcer."""

    total_attempts: int = 0
    passed: int = 0
    failed: int = 0
    by_gate: dict[int, GateCounter] = field(
        default_factory=lambda: {n: GateCounter() for n in GATE_NUMBERS}
    )


# ---------------------------------------------------------------------------
# Syntax checks for created files (language-aware)
# ---------------------------------------------------------------------------


@dataclass
class SyntaxCheckerConfig:
    """Syntax-only parser for a family of file types.

    Attributes:
        name: Human-readable checker name
        extensions: File extensions this checker handles (e.g., {".py"})
        parse: Callable that raises on a syntax error. Receives file content.
    """

    name: str
    extensions: set[str]
    parse: Callable[[str], Any]


def _tree_sitter_parse(language: Any) -> Callable[[str], Any]:
    """Build a parse callable that raises SyntaxError when the tree has error nodes."""
    parser = Parser(Language(language))

    def parse(content: str) -> Any:
        tree = parser.parse(content.encode("utf-8"))
        if tree.root_node.has_error:
            raise SyntaxError(_describe_first_error(tree.root_node))
        return tree

    return parse


def _describe_first_error(node: Any) -> str:
    if node.type == "ERROR" or node.is_missing:
        row, column = node.start_point
        return f"Syntax error at line {row + 1}, column {column + 1}"
    for child in node.children:
        if child.has_error or child.is_missing:
            return _describe_first_error(child)
    return "Syntax error"


# Add new checkers here. The first config whose extensions contain the file
# suffix wins.
SYNTAX_CHECKERS: list[SyntaxCheckerConfig] = [
    SyntaxCheckerConfig(name="python", extensions={".py", ".pyi"}, parse=ast.parse),
    SyntaxCheckerConfig(name="json", extensions={".json"}, parse=json.loads),
    SyntaxCheckerConfig(name="yaml", extensions={".yaml", ".yml"}, parse=yaml.safe_load),
    SyntaxCheckerConfig(name="toml", extensions={".toml"}, parse=tomllib.loads),
    SyntaxCheckerConfig(
        name="typescript",
        extensions={".ts", ".mts", ".cts"},
        parse=_tree_sitter_parse(tstype.language_typescript()),
    ),
    SyntaxCheckerConfig(name="tsx", extensions={".tsx"}, parse=_tree_sitter_parse(tstype.language_tsx())),
    SyntaxCheckerConfig(
        name="javascript",
        extensions={".js", ".jsx", ".mjs", ".cjs"},
        parse=_tree_sitter_parse(tsjs.language()),
    ),
]


def _find_syntax_checker(file_path: Path) -> Optional[SyntaxCheckerConfig]:
    """Return the first matching ``SyntaxCheckerConfig`` for *file_path*, or ``None``."""
    suffix = file_path.suffix.lower()
    for cfg in SYNTAX_CHECKERS:
        if suffix in cfg.extensions:
            return cfg
    return None


def check_syntax(file_path: Path) -> Optional[str]:
    """Parse a file with its registered checker.

    Returns:
        The parse error message, or None if the file parses or has no checker
    """
    cfg = _find_syntax_checker(file_path)
    if cfg is None:
        return None
    try:
        cfg.parse(file_path.read_text(encoding="utf-8"))
    except (SyntaxError, ValueError, yaml.YAMLError, UnicodeDecodeError) as e:
        return str(e)
    return None


class GateEnforcer:
    """Validates phase outputs and tracks gate statistics.

    Args:
        validator: Changelog/checklist validator for gate 4
        verification_pipeline: Pipeline run by gate 5
        workspace_root: Base directory for relative created-file paths
    """

    def __init__(
        self,
        validator: DocumentValidator,
        verification_pipeline: Verifier,
        workspace_root: Union[str, Path] = ".",
    ):
        self.validator = validator
        self.verification_pipeline = verification_pipeline
        self.workspace_root = Path(workspace_root)
        self._stats = GateStats()

    async def enforce_gate1(self, plan: ExecutionPlan) -> GateResult:
        """Gate 1: the execution plan is complete."""
        issues: list[str] = []

        if not plan.objective or len(plan.objective) < MIN_OBJECTIVE_LENGTH:
            issues.append("Plan objective is missing or too short")

        if not plan.steps:
            issues.append("Plan has no execution steps")

        for index, step in enumerate(plan.steps or []):
            if not step.type or not step.description:
                issues.append(f"Step {index} is missing type or description")

        if not plan.rollback_strategy:
            issues.append("Plan has no rollback strategy")

        return GateResult(passed=not issues, issues=tuple(issues))

    async def enforce_gate2(self, audit: AuditReport) -> GateResult:
        """Gate 2: the audit approved the plan, or its issues are auto-fixable."""
        if audit.approval == AuditApproval.APPROVED:
            return GateResult(passed=True)

        messages = tuple(issue.message for issue in audit.issues)

        if audit.approval == AuditApproval.CONDITIONAL and audit.auto_fixable:
            return GateResult(passed=True, issues=messages, auto_fixed=True)

        return GateResult(passed=False, issues=messages)

    async def enforce_gate3(self, result: TaskResult) -> GateResult:
        """Gate 3: execution reported no errors and created files exist and parse."""
        issues: list[str] = list(result.errors)

        for file in result.files_created:
            path = self._resolve(file.path)
            exists = await asyncio.to_thread(path.exists)
            if not exists:
                issues.append(f"Expected file not created: {file.path}")
                continue

            error = await asyncio.to_thread(check_syntax, path)
            if error is not None:
                issues.append(f"Syntax error in {file.path}: {error}")

        return GateResult(passed=not issues, issues=tuple(issues))

    async def enforce_gate4(self, docs: DocumentationResult) -> GateResult:
        """Gate 4: documentation updated and still consistent."""
        issues: list[str] = []

        if not docs.success:
            issues.append("Documentation update failed")

        changelog = await self.validator.validate_changelog()
        if not changelog.valid:
            issues.append(f"Changelog validation failed: {changelog.reason}")

        checklist = await self.validator.validate_checklist()
        if not checklist.valid:
            issues.append(f"Checklist validation failed: {checklist.reason}")

        return GateResult(passed=not issues, issues=tuple(issues))

    async def enforce_gate5(self, _input: Any = None) -> GateResult:
        """Gate 5: the full verification pipeline passes."""
        report = await self.verification_pipeline.run_all()
        issues: list[str] = []

        if not report.typescript.passed:
            issues.append("TypeScript compilation failed")

        if not report.eslint.passed:
            issues.append(f"ESLint found {report.eslint.error_count} error(s)")

        if not report.tests.passed:
            issues.append(f"{report.tests.failed} test(s) failed")

        if not report.build.passed:
            issues.append("Build failed")

        if not report.documentation.passed:
            issues.append("Documentation integrity check failed")

        return GateResult(passed=report.passed, issues=tuple(issues), report=report)

    async def enforce_gate(self, gate_number: int, gate_input: Any = None) -> GateResult:
        """Run a gate by number and update statistics.

        Raises:
            ValueError: If gate_number is not 1-5
        """
        handlers = {
            1: self.enforce_gate1,
            2: self.enforce_gate2,
            3: self.enforce_gate3,
            4: self.enforce_gate4,
            5: self.enforce_gate5,
        }
        handler = handlers.get(gate_number)
        if handler is None:
            raise ValueError(f"Invalid gate number: {gate_number}")

        logger.info(f"[GateEnforcer] Enforcing Gate {gate_number}")
        counter = self._stats.by_gate.setdefault(gate_number, GateCounter())
        self._stats.total_attempts += 1
        counter.attempts += 1

        result = await handler(gate_input)

        if result.passed:
            self._stats.passed += 1
            counter.passed += 1
        else:
            self._stats.failed += 1
            counter.failed += 1
            logger.info(f"[GateEnforcer] Gate {gate_number} failed: {'; '.join(result.issues)}")

        return result

    def get_gate_statistics(self) -> GateStats:
        """Snapshot of the counters; later gate runs do not affect it."""
        return copy.deepcopy(self._stats)

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.workspace_root / candidate
