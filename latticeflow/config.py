"""
latticeflow.config
==================

Analysis configuration.

Every analysis is constructed from an :class:`AnalysisConfig` naming it by
id (``"constprop"``, ``"livevar"`` …) and carrying free-form options.  The
id is also the key under which per-method results are stored in
:class:`latticeflow.ir.IR`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class AnalysisConfig:
    """Identifier and options of one analysis.

    Attributes
    ----------
    id : str
        Analysis id.
    options : dict
        Analysis-specific options, read with :meth:`get_option`.
    """

    id: str
    options: Dict[str, Any] = field(default_factory=dict, hash=False)

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def __str__(self) -> str:
        if not self.options:
            return self.id
        opts = ", ".join(f"{k}={v!r}" for k, v in sorted(self.options.items()))
        return f"{self.id}[{opts}]"
