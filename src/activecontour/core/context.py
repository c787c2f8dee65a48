"""Per-run context carrying explicit counters.

Identifiers handed out while a run is in progress (curve ids in a coupled
run, for example) come from a :class:`RunContext` threaded through the
optimizers. Two runs with separate contexts never observe each other's
counters.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["RunContext"]


@dataclass
class RunContext:
    """Mutable state owned by a single optimization run.

    Attributes:
        run_id: Identifier of the run, used in log messages.
        counters: Named monotonically increasing counters.
    """

    run_id: str = ""
    counters: dict[str, int] = field(default_factory=dict)

    def next_id(self, name: str = "curve") -> int:
        """Return the next value of counter *name*, starting at zero.

        Args:
            name: Counter name.

        Returns:
            The counter value before incrementing.
        """
        value = self.counters.get(name, 0)
        self.counters[name] = value + 1
        return value

    def peek(self, name: str = "curve") -> int:
        """Return the next value of counter *name* without consuming it."""
        return self.counters.get(name, 0)
