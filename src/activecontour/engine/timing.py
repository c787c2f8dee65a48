"""Timing observer for per-curve iteration and total run wall-clock time."""

from __future__ import annotations

import logging
from pathlib import Path

from activecontour.engine.events import (
    Event,
    IterationComplete,
    RunComplete,
    RunFailed,
    RunStart,
)

logger = logging.getLogger(__name__)


class TimingObserver:
    """Accumulates iteration timings per curve and reports them at run end.

    Args:
        output_path: If set, the report is written to this file when the
            run completes or fails.

    Example::

        observer = TimingObserver()
        SegmentationRun(optimizer, config, observers=[observer]).run()
        print(observer.report())
    """

    def __init__(self, output_path: str | Path | None = None) -> None:
        self._output_path = Path(output_path) if output_path is not None else None
        self.curve_times: dict[str, list[float]] = {}
        self.total_time: float | None = None
        self.run_id: str = ""
        self._failed = False

    def on_event(self, event: Event) -> None:
        if isinstance(event, RunStart):
            self.run_id = event.run_id
            self.curve_times.clear()
            self.total_time = None
            self._failed = False
        elif isinstance(event, IterationComplete):
            self.curve_times.setdefault(event.curve_name, []).append(
                event.elapsed_seconds
            )
        elif isinstance(event, RunComplete):
            self.total_time = event.elapsed_seconds
            self._failed = False
            self._finalize()
        elif isinstance(event, RunFailed):
            self.total_time = event.elapsed_seconds
            self._failed = True
            self._finalize()

    def report(self) -> str:
        """Return a formatted multi-line timing report.

        One row per curve with its iteration count, summed time and mean
        time per iteration, followed by the run total.

        Returns:
            Formatted timing report string.
        """
        lines = [f"Timing Report - run: {self.run_id}", "=" * 60]
        for name, times in self.curve_times.items():
            spent = sum(times)
            mean_ms = spent / len(times) * 1000.0 if times else 0.0
            lines.append(
                f"  {name:<24s} {len(times):6d} it {spent:8.3f}s {mean_ms:8.2f}ms/it"
            )
        lines.append("-" * 60)
        if self.total_time is not None:
            lines.append(f"  {'TOTAL':<24s} {self.total_time:8.3f}s")
        else:
            lines.append(f"  {'TOTAL':<24s}      N/A")
        if self._failed:
            lines.append("")
            lines.append("  ** Run FAILED - partial timing report **")
        return "\n".join(lines)

    def _finalize(self) -> None:
        report_text = self.report()
        logger.info("\n%s", report_text)
        if self._output_path is not None:
            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._output_path.write_text(report_text, encoding="utf-8")


__all__ = ["TimingObserver"]
