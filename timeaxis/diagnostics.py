"""
Step diagnostics shared by the parsing, aggregation and planning steps.
"""

import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class StepResult:
    """Container for per-step row counts, warnings and metrics."""

    def __init__(self, label: Optional[str] = None) -> None:
        # Identification
        self.label: Optional[str] = label

        # Row counters
        self.original_rows: int = 0
        self.output_rows: int = 0
        self.dropped_rows: int = 0

        # Diagnostics
        self.warnings: list[str] = []
        self.events: list[str] = []
        self.metrics: dict[str, int | float | str] = {}
        self.fallback_reason: Optional[str] = None

        # Timing
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    # Timing helpers
    def start(self) -> None:
        self.started_at = time.perf_counter()

    def stop(self) -> None:
        self.finished_at = time.perf_counter()
        if self.started_at is not None:
            self.elapsed_ms = (self.finished_at - self.started_at) * 1000.0

    # Logging helpers
    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning(message)

    def add_event(self, message: str) -> None:
        """Add an info-level event message."""
        self.events.append(message)
        logger.info(message)

    def add_metric(self, name: str, value: int | float | str) -> None:
        """Attach a named metric."""
        self.metrics[name] = value

    def set_fallback(self, reason: str) -> None:
        """Mark the step as having taken its fallback path."""
        self.fallback_reason = reason
        self.add_event(f"Fallback taken: {reason}")

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [f"{lbl}result: {self.original_rows} → {self.output_rows}"]
        if self.dropped_rows:
            parts.append(f"dropped_rows={self.dropped_rows}")
        if self.warnings:
            parts.append(f"warnings={len(self.warnings)}")
        if self.fallback_reason:
            parts.append(f"fallback={self.fallback_reason}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        if self.metrics:
            parts.append(f"metrics={self.metrics}")
        return " | ".join(parts)
