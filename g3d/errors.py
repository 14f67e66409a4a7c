"""
Error types shared by the G3D compiler pipeline and the evaluation engine.
"""

from typing import Optional, Sequence


class G3DSyntaxError(SyntaxError):
    """
    Fatal diagnostic for a single parse attempt.

    Always carries the 1-based source line where the offending statement
    started, plus a human-readable cause. A failed parse produces no IR.
    """

    def __init__(self, line: int, cause: str, text: Optional[str] = None):
        self.cause = cause
        super().__init__(f"Line {line}: {cause}", ("<g3d>", line, 1, text))

    @property
    def line(self) -> int:
        return self.lineno

    def __str__(self):
        return self.msg


class EvaluationError(ValueError):
    """Expression could not be evaluated (undefined name, malformed text)."""
    pass


class CircularDefinitionError(ValueError):
    """Named functions that reference each other in a cycle"""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("Circular definition: " + " -> ".join(self.cycle))
