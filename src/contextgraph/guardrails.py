"""Static check that field writes only happen behind the propose/confirm workflow.

Any call to a store write method outside the allowed modules is reported.
Run it from the test suite or with ``contextgraph guardrails``.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path
from typing import Final

WRITE_METHODS: Final[frozenset[str]] = frozenset({"write_field", "update_alternatives"})
ALLOWED_WRITERS: Final[tuple[str, ...]] = (
    "contextgraph/domain/workflow.py",
    "contextgraph/adapters/",
)
PACKAGE_ROOT: Final[Path] = Path(__file__).resolve().parent


@dataclass(frozen=True, slots=True)
class GuardrailViolation:
    path: str
    line: int
    call: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line}: direct call to {self.call}() bypasses the workflow"


def _write_calls(tree: ast.AST) -> list[tuple[int, str]]:
    calls: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Attribute)
            and node.func.attr in WRITE_METHODS
        ):
            calls.append((node.lineno, node.func.attr))
    return calls


def find_unguarded_writes(
    package_root: Path = PACKAGE_ROOT,
    *,
    allowed: tuple[str, ...] = ALLOWED_WRITERS,
) -> list[GuardrailViolation]:
    """Return every write call in ``package_root`` outside the ``allowed`` prefixes.

    Paths are compared relative to the parent of ``package_root``, so prefixes
    start with the package name.
    """

    violations: list[GuardrailViolation] = []
    base = package_root.parent
    for path in sorted(package_root.rglob("*.py")):
        relative = path.relative_to(base).as_posix()
        if any(relative.startswith(prefix) for prefix in allowed):
            continue
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        violations.extend(
            GuardrailViolation(path=relative, line=line, call=call)
            for line, call in _write_calls(tree)
        )
    return violations
