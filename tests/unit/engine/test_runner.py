"""Unit tests for SegmentationRun orchestration, event emission and config artifact."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import yaml

from activecontour.core.coupled import CoupledResult
from activecontour.core.energies import CurvatureEnergy, LengthEnergy, RegionFitEnergy
from activecontour.core.errors import InitializationError
from activecontour.core.optimizer import IterationStatus, OptimizationResult
from activecontour.core.raster import ArrayRaster
from activecontour.core.stepsize import PointwiseExternalStepSize
from activecontour.core.termination import AreaDiff, MaxIterations
from activecontour.engine import (
    Event,
    IterationComplete,
    RunComplete,
    RunFailed,
    RunStart,
    SegmentationRun,
    build_energy_set,
    build_optimizer,
    build_step_size,
    build_terminations,
    load_config,
    run_segmentation,
)

# ---------------------------------------------------------------------------
# Test helpers / fixtures
# ---------------------------------------------------------------------------


class RecordingObserver:
    """Observer that records every received event in order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def on_event(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Event]:
        return [e for e in self.events if isinstance(e, event_type)]


def _config(iterations: int = 4, **overrides):
    cli = {
        "energies": [{"kind": "length", "alpha": 0.5}],
        "terminations": [{"kind": "max_iterations", "max_iterations": iterations}],
    }
    cli.update(overrides)
    return load_config(run_id="test_run", cli_overrides=cli)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def test_build_energy_set_from_defaults() -> None:
    energy_set = build_energy_set(load_config(run_id="x"))
    assert [type(e) for e in energy_set.energies] == [
        LengthEnergy,
        CurvatureEnergy,
        RegionFitEnergy,
    ]
    assert energy_set.requires_counter_clockwise


def test_build_step_size_and_terminations() -> None:
    config = load_config(
        run_id="x",
        cli_overrides={
            "step_size.kind": "pointwise_external",
            "step_size.damping": 3.0,
            "terminations": [
                {"kind": "max_iterations", "max_iterations": 7},
                {"kind": "area_diff", "fraction": 0.02},
            ],
        },
    )
    step = build_step_size(config)
    assert isinstance(step, PointwiseExternalStepSize)
    assert step.damping == 3.0
    terminations = build_terminations(config)
    assert isinstance(terminations[0], MaxIterations)
    assert isinstance(terminations[1], AreaDiff)
    assert terminations[1].fraction == 0.02


@pytest.mark.parametrize(
    "overrides",
    [
        {"energies": [{"kind": "snakiness"}]},
        {"terminations": [{"kind": "forever"}]},
        {"step_size.kind": "line_search"},
    ],
)
def test_unknown_kinds_rejected_at_build_time(
    overrides, blank_raster, make_circle
) -> None:
    config = load_config(run_id="x", cli_overrides=overrides)
    with pytest.raises(ValueError, match="Unknown"):
        build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))


def test_build_optimizer_applies_optimizer_section(blank_raster, make_circle) -> None:
    config = _config(
        **{"optimizer.do_resampling": False, "optimizer.resample_segment_length": 3.0}
    )
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40), name="cell")
    assert opt.name == "cell"
    assert opt.do_resampling is False
    assert opt.resample_segment_length == 3.0


# ---------------------------------------------------------------------------
# SegmentationRun
# ---------------------------------------------------------------------------


def test_run_emits_events_in_order(blank_raster, make_circle) -> None:
    config = _config(iterations=4)
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    recorder = RecordingObserver()
    result = SegmentationRun(opt, config, observers=[recorder]).run()

    kinds = [type(e) for e in recorder.events]
    assert kinds == [RunStart] + [IterationComplete] * 4 + [RunComplete]

    start = recorder.events[0]
    assert start.run_id == "test_run"  # type: ignore[attr-defined]
    assert start.n_curves == 1  # type: ignore[attr-defined]
    assert start.config is config  # type: ignore[attr-defined]

    iterations = recorder.of_type(IterationComplete)
    assert [e.iteration for e in iterations] == [1, 2, 3, 4]  # type: ignore[attr-defined]
    assert [e.done for e in iterations] == [False, False, False, True]  # type: ignore[attr-defined]
    assert all(e.energies == {} for e in iterations)  # type: ignore[attr-defined]

    complete = recorder.events[-1]
    assert complete.rounds == 4  # type: ignore[attr-defined]
    assert complete.result is result  # type: ignore[attr-defined]
    assert isinstance(result, OptimizationResult)
    assert result.status is IterationStatus.DONE


def test_run_writes_config_artifact(tmp_path: Path, blank_raster, make_circle) -> None:
    output_dir = tmp_path / "runs" / "one"
    config = _config(output_dir=str(output_dir))
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    SegmentationRun(opt, config).run()

    written = yaml.safe_load((output_dir / "config.yaml").read_text(encoding="utf-8"))
    assert written["run_id"] == "test_run"
    assert written["terminations"][0]["params"] == {"max_iterations": 4}


def test_run_without_output_dir_writes_nothing(
    tmp_path: Path, blank_raster, make_circle, monkeypatch
) -> None:
    monkeypatch.chdir(tmp_path)
    config = _config()
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    SegmentationRun(opt, config).run()
    assert list(tmp_path.iterdir()) == []


def test_run_failure_emits_run_failed_and_reraises(make_circle) -> None:
    config = _config()
    opt = build_optimizer(config, None, make_circle(32, 32, 20, 40))  # type: ignore[arg-type]
    recorder = RecordingObserver()
    with pytest.raises(InitializationError):
        SegmentationRun(opt, config, observers=[recorder]).run()

    assert [type(e) for e in recorder.events] == [RunStart, RunFailed]
    failed = recorder.events[-1]
    assert failed.run_id == "test_run"  # type: ignore[attr-defined]
    assert failed.error  # type: ignore[attr-defined]


def test_max_rounds_caps_the_run(blank_raster, make_circle) -> None:
    config = _config(iterations=50, **{"optimizer.max_rounds": 3})
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    recorder = RecordingObserver()
    result = SegmentationRun(opt, config, observers=[recorder]).run()

    assert len(recorder.of_type(IterationComplete)) == 3
    assert result.iterations == 3  # type: ignore[union-attr]
    assert result.status is IterationStatus.SUCCESS  # type: ignore[union-attr]


def test_sample_energies_attaches_values(blank_raster, make_circle) -> None:
    config = _config(
        iterations=2,
        **{"optimizer.sample_energies": True, "optimizer.do_resampling": False},
    )
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    recorder = RecordingObserver()
    SegmentationRun(opt, config, observers=[recorder]).run()

    iterations = recorder.of_type(IterationComplete)
    assert [set(e.energies) for e in iterations] == [{"length"}, {"length"}]  # type: ignore[attr-defined]
    first, second = (e.energies["length"] for e in iterations)  # type: ignore[attr-defined]
    # Pure length energy contracts the curve.
    assert second < first


def test_observers_do_not_change_the_result(blank_raster, make_circle) -> None:
    config = _config(iterations=5)
    plain = SegmentationRun(
        build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40)), config
    ).run()
    observed = SegmentationRun(
        build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40)),
        config,
        observers=[RecordingObserver()],
    ).run()
    assert plain.points.tolist() == observed.points.tolist()  # type: ignore[union-attr]


def test_remove_observer(blank_raster, make_circle) -> None:
    config = _config(iterations=2)
    opt = build_optimizer(config, blank_raster, make_circle(32, 32, 20, 40))
    run = SegmentationRun(opt, config)
    recorder = RecordingObserver()
    run.add_observer(recorder, RunComplete)
    run.remove_observer(recorder, RunComplete)
    run.run()
    assert recorder.events == []


# ---------------------------------------------------------------------------
# run_segmentation
# ---------------------------------------------------------------------------


def test_run_segmentation_single_curve(blank_raster, make_circle) -> None:
    result = run_segmentation(
        _config(iterations=3), blank_raster, [make_circle(32, 32, 20, 40)]
    )
    assert isinstance(result, OptimizationResult)
    assert result.iterations == 3


def test_run_segmentation_coupled(blank_raster, make_circle) -> None:
    recorder = RecordingObserver()
    result = run_segmentation(
        _config(iterations=3),
        blank_raster,
        [make_circle(20, 20, 10, 20), make_circle(44, 44, 10, 20)],
        observers=[recorder],
    )
    assert isinstance(result, CoupledResult)
    assert result.rounds == 3
    assert result.iterations_per_curve == [3, 3]

    start = recorder.of_type(RunStart)[0]
    assert start.n_curves == 2  # type: ignore[attr-defined]
    names = [e.curve_name for e in recorder.of_type(IterationComplete)]  # type: ignore[attr-defined]
    assert names == ["curve-0", "curve-1"] * 3
    assert recorder.of_type(RunComplete)[0].rounds == 3  # type: ignore[attr-defined]


def test_run_segmentation_requires_curves(blank_raster) -> None:
    with pytest.raises(ValueError):
        run_segmentation(_config(), blank_raster, [])


def test_default_config_segments_uint8_disk(make_circle) -> None:
    """Default normalizations let the default energies lock onto a 0/255 disk."""
    yy, xx = np.mgrid[0:100, 0:100]
    image = np.where((xx - 50) ** 2 + (yy - 50) ** 2 <= 20**2, 255, 0).astype(np.uint8)
    result = run_segmentation(
        load_config(run_id="defaults"), ArrayRaster(image), [make_circle(50, 50, 35, 70)]
    )
    assert isinstance(result, OptimizationResult)
    area = abs(result.curve.signed_area())
    assert area == pytest.approx(np.pi * 20**2, rel=0.15)
    cx, cy = result.curve.center_of_mass()
    assert cx == pytest.approx(50.0, abs=2.0)
    assert cy == pytest.approx(50.0, abs=2.0)
