"""
latticeflow.errors
==================

Exception hierarchy shared by the engine, the program loader and the CLI.

::

    LatticeFlowError (base)
    ├── UnsupportedDirectionError   - solver asked to run in a direction it
    │                                 does not implement (API misuse)
    ├── ProgramFormatError          - malformed S-expression program text
    └── UnknownAnalysisError        - analysis id not known to the pipeline

Everything else the engine consumes (CFGs, call graphs, stored results) is
assumed valid by contract and is not pre-checked here.
"""

from __future__ import annotations

from typing import Any, Optional


class LatticeFlowError(Exception):
    """Base class of every error raised by ``latticeflow``."""


class UnsupportedDirectionError(LatticeFlowError, NotImplementedError):
    """Raised when a solver is asked to solve in an unsupported direction.

    The intraprocedural worklist solver only implements forward solving;
    backward analyses go through :func:`latticeflow.livevar.solve_backward`,
    which reverses the graph first.
    """

    def __init__(self, solver: str, direction: str) -> None:
        self.solver = solver
        self.direction = direction
        super().__init__(
            f"{solver} does not support {direction} analyses; "
            f"reverse the graph or use a direction-aware driver"
        )


class ProgramFormatError(LatticeFlowError):
    """Raised when program text cannot be mapped onto the IR.

    Attributes
    ----------
    message : str
        What went wrong.
    form : Any, optional
        The offending (raw) S-expression, when one is available.
    """

    def __init__(self, message: str, form: Optional[Any] = None) -> None:
        self.message = message
        self.form = form
        super().__init__(message)

    def __str__(self) -> str:
        if self.form is not None:
            return f"{self.message} (in {_render_form(self.form)})"
        return self.message


class UnknownAnalysisError(LatticeFlowError, KeyError):
    """Raised when an analysis id is not part of the pipeline."""

    def __init__(self, analysis_id: str) -> None:
        self.analysis_id = analysis_id
        super().__init__(analysis_id)

    def __str__(self) -> str:
        return f"unknown analysis {self.analysis_id!r}"


def _render_form(form: Any, limit: int = 60) -> str:
    text = repr(form)
    if len(text) > limit:
        text = text[: limit - 1] + "…"
    return text
