"""
Structured progress reporting.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """
    One unit of progress in a pack or migrate run.

    Attributes:
        phase: Run phase (e.g. 'manifest', 'design_docs', 'documents')
        message: Short machine-oriented description of the step
        current: Units completed in this phase
        total: Units expected in this phase
    """
    phase: str
    message: str
    current: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "message": self.message,
            "current": self.current,
            "total": self.total,
        }


ProgressCallback = Callable[[ProgressEvent], None]


def report_progress(
    callback: Optional[ProgressCallback],
    phase: str,
    current: int,
    total: int,
    message: str,
) -> None:
    """
    Invoke a progress callback synchronously.

    A failing callback must never abort the run it observes, so any
    exception it raises is logged and discarded here.
    """
    if callback is None:
        return
    try:
        callback(ProgressEvent(phase=phase, message=message, current=current, total=total))
    except Exception as e:
        logger.debug(f"Ignoring progress callback failure in phase {phase}: {e}")
