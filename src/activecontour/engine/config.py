"""Frozen dataclass config hierarchy for snake optimization runs.

Loading precedence: defaults -> YAML file -> CLI overrides -> freeze.

The frozen guarantee prevents accidental mutation while optimizers are
running. When a run has an output directory, the full serialized config is
written there before the first iteration.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from activecontour.core.energies import EnergyNormalization
from activecontour.core.raster import IntensityNormalization

# ---------------------------------------------------------------------------
# Section config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnergyConfig:
    """One weighted energy term.

    Attributes:
        kind: Energy identifier (``"length"``, ``"curvature"``,
            ``"region_fit"``, ``"image_gradient"``).
        weight: Non-negative relative weight within the energy set.
        params: Keyword arguments for the energy constructor (e.g.
            ``{"alpha": 0.5}``).
    """

    kind: str = "length"
    weight: float = 1.0
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"Energy weight must be non-negative, got {self.weight}")
        if not isinstance(self.params, dict):
            object.__setattr__(self, "params", dict(self.params))


@dataclass(frozen=True)
class TerminationConfig:
    """One termination strategy.

    Attributes:
        kind: Strategy identifier (``"max_iterations"``, ``"area_diff"``,
            ``"area_diff_sliding_offset"``, ``"motion_diff"``).
        params: Keyword arguments for the strategy constructor.
    """

    kind: str = "max_iterations"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.params, dict):
            object.__setattr__(self, "params", dict(self.params))


@dataclass(frozen=True)
class StepSizeConfig:
    """Step-size strategy settings.

    Attributes:
        kind: ``"constant"`` or ``"pointwise_external"``.
        gamma: Base step size.
        damping: Damping strength of the pointwise strategy; ignored by the
            constant strategy.
    """

    kind: str = "constant"
    gamma: float = 0.5
    damping: float = 25.0


@dataclass(frozen=True)
class OptimizerConfig:
    """Settings shared by every optimizer of a run.

    Attributes:
        closed: Whether curves are closed.
        resample_segment_length: Target point spacing in pixels.
        do_resampling: Resample at initialization and every second iteration.
        energy_normalization: ``"none"`` or ``"balanced_derivatives"``.
        intensity_normalization: ``"none"``, ``"true_range"`` or
            ``"theoretic_range"``.
        sample_energies: Evaluate all energies after every iteration and
            attach them to iteration events.
        max_rounds: Optional hard cap on iterations (rounds for coupled
            runs), independent of the termination strategies.
    """

    closed: bool = True
    resample_segment_length: float = 5.0
    do_resampling: bool = True
    energy_normalization: str = "balanced_derivatives"
    intensity_normalization: str = "true_range"
    sample_energies: bool = False
    max_rounds: int | None = None

    def __post_init__(self) -> None:
        # Enum construction raises ValueError for unknown mode strings.
        EnergyNormalization(self.energy_normalization)
        IntensityNormalization(self.intensity_normalization)
        if not self.resample_segment_length > 0:
            raise ValueError(
                "resample_segment_length must be positive, got "
                f"{self.resample_segment_length}"
            )


def _default_energies() -> tuple[EnergyConfig, ...]:
    return (
        EnergyConfig(kind="length", weight=1.0, params={"alpha": 0.5}),
        EnergyConfig(kind="curvature", weight=1.0, params={"beta": 0.5}),
        EnergyConfig(kind="region_fit", weight=1.0, params={}),
    )


def _default_terminations() -> tuple[TerminationConfig, ...]:
    return (TerminationConfig(kind="max_iterations", params={"max_iterations": 100}),)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SnakeConfig:
    """Top-level frozen config for a snake optimization run.

    Attributes:
        run_id: Unique run identifier (timestamp-based by default).
        output_dir: Directory receiving ``config.yaml``; empty disables it.
        optimizer: Optimizer settings.
        step_size: Step-size strategy settings.
        energies: Energy terms in evaluation order.
        terminations: Termination strategies in polling order.
    """

    run_id: str = ""
    output_dir: str = ""
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    step_size: StepSizeConfig = field(default_factory=StepSizeConfig)
    energies: tuple[EnergyConfig, ...] = field(default_factory=_default_energies)
    terminations: tuple[TerminationConfig, ...] = field(
        default_factory=_default_terminations
    )

    def __post_init__(self) -> None:
        if not isinstance(self.energies, tuple):
            object.__setattr__(self, "energies", tuple(self.energies))
        if not isinstance(self.terminations, tuple):
            object.__setattr__(self, "terminations", tuple(self.terminations))
        if not self.energies:
            raise ValueError("At least one energy must be configured")
        if not self.terminations:
            raise ValueError("At least one termination strategy must be configured")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generate_run_id() -> str:
    """Generate a timestamp-based run identifier.

    Returns:
        Run ID string of the form "run_YYYYMMDD_HHMMSS".
    """
    return f"run_{datetime.now():%Y%m%d_%H%M%S}"


def _merge_section(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge *overrides* onto *defaults*, returning a new dict."""
    merged = dict(defaults)
    merged.update(overrides)
    return merged


def _flatten_overrides(flat: dict[str, Any], nested: dict[str, Any]) -> dict[str, Any]:
    """Flatten one level of nested dicts into dot-notation keys.

    Lists (``energies``, ``terminations``) are kept whole under their key.

    Args:
        flat: Existing flat override dict (dot-notation keys).
        nested: Override source; may be nested or already flat.

    Returns:
        New flat dict combining both sources, nested taking precedence.
    """
    result = dict(flat)
    for key, value in nested.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                result[f"{key}.{subkey}"] = subvalue
        else:
            result[key] = value
    return result


def _bucket_dotted(flat: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Convert dot-notation keys to a nested section->field mapping.

    Top-level keys (no dot) land in a special ``"__top__"`` bucket.
    """
    nested: dict[str, Any] = {"__top__": {}}
    for key, value in flat.items():
        if "." in key:
            section, _, field_name = key.partition(".")
            nested.setdefault(section, {})[field_name] = value
        else:
            nested["__top__"][key] = value
    return nested


def _energy_from_mapping(raw: dict[str, Any]) -> EnergyConfig:
    """Build an :class:`EnergyConfig` from ``{kind, weight, params, **extra}``.

    Keys other than ``kind``, ``weight`` and ``params`` are merged into
    ``params`` so YAML entries may list constructor arguments inline.

    Raises:
        ValueError: If ``kind`` is missing.
    """
    entry = dict(raw)
    if "kind" not in entry:
        raise ValueError(f"Energy entry without 'kind': {raw!r}")
    kind = entry.pop("kind")
    weight = float(entry.pop("weight", 1.0))
    params = dict(entry.pop("params", None) or {})
    params.update(entry)
    return EnergyConfig(kind=kind, weight=weight, params=params)


def _termination_from_mapping(raw: dict[str, Any]) -> TerminationConfig:
    """Build a :class:`TerminationConfig`; extra keys become ``params``.

    Raises:
        ValueError: If ``kind`` is missing.
    """
    entry = dict(raw)
    if "kind" not in entry:
        raise ValueError(f"Termination entry without 'kind': {raw!r}")
    kind = entry.pop("kind")
    params = dict(entry.pop("params", None) or {})
    params.update(entry)
    return TerminationConfig(kind=kind, params=params)


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def load_config(
    yaml_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> SnakeConfig:
    """Construct a frozen :class:`SnakeConfig` using layered overrides.

    Loading precedence (lowest -> highest priority):

    1. Dataclass field defaults
    2. YAML file (*yaml_path*)
    3. CLI overrides (*cli_overrides*)
    4. Freeze

    Section fields may be overridden with dot-notation keys
    ("optimizer.do_resampling") or nested dicts. ``energies`` and
    ``terminations`` are lists and are replaced as a whole.

    Args:
        yaml_path: Optional path to a YAML config file.
        cli_overrides: Optional dict of overrides (highest precedence).
        run_id: Explicit run identifier. Auto-generated if not provided.

    Returns:
        Frozen :class:`SnakeConfig` with all overrides applied.

    Raises:
        ValueError: On unknown modes, malformed list entries or invalid
            values.
    """
    # --- layer 1: defaults ------------------------------------------------
    opt_kwargs: dict[str, Any] = {}
    step_kwargs: dict[str, Any] = {}
    top_kwargs: dict[str, Any] = {}

    layers: list[dict[str, Any]] = []

    # --- layer 2: YAML overrides ------------------------------------------
    if yaml_path is not None:
        yaml_path = Path(yaml_path)
        with yaml_path.open() as fh:
            raw: dict[str, Any] = yaml.safe_load(fh) or {}
        layers.append(raw)

    # --- layer 3: CLI overrides -------------------------------------------
    if cli_overrides is not None:
        layers.append(cli_overrides)

    for layer in layers:
        nested = _bucket_dotted(_flatten_overrides({}, layer))
        opt_kwargs = _merge_section(opt_kwargs, nested.get("optimizer", {}))
        step_kwargs = _merge_section(step_kwargs, nested.get("step_size", {}))
        top_kwargs = _merge_section(top_kwargs, nested.get("__top__", {}))

    # --- layer 4: resolve lists and run_id --------------------------------
    energies_raw = top_kwargs.pop("energies", None)
    terminations_raw = top_kwargs.pop("terminations", None)
    extra: dict[str, Any] = {}
    if energies_raw is not None:
        extra["energies"] = tuple(_energy_from_mapping(e) for e in energies_raw)
    if terminations_raw is not None:
        extra["terminations"] = tuple(
            _termination_from_mapping(t) for t in terminations_raw
        )

    resolved_run_id = run_id or top_kwargs.pop("run_id", None) or _generate_run_id()
    top_kwargs.pop("run_id", None)

    # --- construct & freeze -----------------------------------------------
    return SnakeConfig(
        run_id=resolved_run_id,
        optimizer=OptimizerConfig(**opt_kwargs),
        step_size=StepSizeConfig(**step_kwargs),
        **extra,
        **top_kwargs,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    """Convert tuples to lists recursively so the YAML stays safe-loadable."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def serialize_config(config: SnakeConfig) -> str:
    """Serialize *config* to a YAML string.

    Uses :func:`dataclasses.asdict` to convert the frozen hierarchy to a
    plain dict, then :func:`yaml.dump` to produce a YAML string that
    :func:`load_config` reads back into an equal config.

    Args:
        config: Frozen config to serialize.

    Returns:
        YAML string representation of the config.
    """
    return yaml.dump(
        _plain(dataclasses.asdict(config)), default_flow_style=False, sort_keys=True
    )
