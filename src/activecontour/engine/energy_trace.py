"""Observer collecting the energy values of every iteration into a table."""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path

from activecontour.engine.events import Event, IterationComplete, RunComplete, RunStart

logger = logging.getLogger(__name__)


class EnergyTraceObserver:
    """Records energies reported with :class:`IterationComplete` events.

    Energies are only attached to events when the run has
    ``optimizer.sample_energies`` enabled; iterations without energies are
    skipped.

    Args:
        output_path: If set, the table is written as CSV when the run
            completes.
    """

    def __init__(self, output_path: str | Path | None = None) -> None:
        self._output_path = Path(output_path) if output_path is not None else None
        self.rows: list[tuple[str, int, dict[str, float]]] = []

    def on_event(self, event: Event) -> None:
        if isinstance(event, RunStart):
            self.rows.clear()
        elif isinstance(event, IterationComplete) and event.energies:
            self.rows.append((event.curve_name, event.iteration, dict(event.energies)))
        elif isinstance(event, RunComplete) and self._output_path is not None:
            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._output_path.write_text(self.report(), encoding="utf-8")
            logger.info("Energy trace written to %s", self._output_path)

    @property
    def energy_names(self) -> list[str]:
        """Energy names in first-seen order."""
        names: dict[str, None] = {}
        for _, _, energies in self.rows:
            for name in energies:
                names.setdefault(name, None)
        return list(names)

    def series(self, curve_name: str, energy_name: str) -> list[float]:
        """Values of one energy over the iterations of one curve."""
        return [
            energies[energy_name]
            for name, _, energies in self.rows
            if name == curve_name and energy_name in energies
        ]

    def report(self) -> str:
        """Return the table as CSV text with a header row.

        Columns are ``curve``, ``iteration`` and one column per energy
        name; energies missing from a row are left empty.
        """
        names = self.energy_names
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["curve", "iteration", *names])
        for curve_name, iteration, energies in self.rows:
            writer.writerow(
                [
                    curve_name,
                    iteration,
                    *(repr(energies[n]) if n in energies else "" for n in names),
                ]
            )
        return buffer.getvalue()


__all__ = ["EnergyTraceObserver"]
