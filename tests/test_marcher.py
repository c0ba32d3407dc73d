"""
Tests for the time marcher.

Tests verify:
- State transitions UNINITIALIZED -> READY -> STEPPING -> COMPLETED
- Step count nt = int(tmax / dt) and CFL reporting
- Diagnostics and snapshots every K steps
- Failures move the marcher to FAILED with the step attached
- End-to-end run on the 25³ reference model
"""

import warnings

import numpy as np
import pytest

from acoustic_march import (
    AssemblyFailure,
    CFLWarning,
    ConfigurationError,
    GridModel,
    LinearSolver,
    MarcherState,
    SlabPartition,
    SnapshotIOFailure,
    SolveNonConvergence,
    SourceModel,
    TimeMarcher,
)


class RecordingSink:
    """Snapshot sink that keeps copies in memory."""

    def __init__(self):
        self.snapshots = {}

    def write(self, vector, step):
        self.snapshots[step] = vector.copy()
        return f"memory:{step}"


class FailingSink:
    def write(self, vector, step):
        raise PermissionError("read-only file system")


class FailingSolver(LinearSolver):
    """Solver that stops converging after a number of solves."""

    def __init__(self, fail_at, message="did not converge"):
        super().__init__(method="direct")
        self.fail_at = fail_at
        self.message = message

    def solve(self, operator, rhs):
        if self.num_solves + 1 == self.fail_at:
            raise SolveNonConvergence(self.message, method="test", info=7)
        return super().solve(operator, rhs)


@pytest.fixture
def marcher(small_grid, small_source):
    return TimeMarcher(
        small_grid, small_source, tmax=0.5, diagnostic_interval=5, solver=LinearSolver("direct")
    )


class TestSetup:
    def test_initial_state(self, marcher):
        assert marcher.state is MarcherState.UNINITIALIZED

    def test_setup_moves_to_ready(self, marcher, small_grid):
        sim = marcher.setup()
        assert marcher.state is MarcherState.READY
        assert sim.history.size == small_grid.num_nodes
        assert np.all(sim.history.current == 0.0)
        assert marcher.operator_builder.is_built

    def test_default_timestep_and_steps(self, marcher, small_grid):
        """Test dt = dx / cmax and nt = int(tmax / dt)."""
        marcher.setup()
        dt = small_grid.min_spacing / small_grid.max_wave_speed
        assert marcher.dt == pytest.approx(dt)
        assert marcher.num_steps == int(0.5 / dt)
        assert marcher.cfl_number == pytest.approx(1.0)

    def test_explicit_timestep(self, small_grid, small_source):
        marcher = TimeMarcher(small_grid, small_source, tmax=0.1, dt=0.001)
        marcher.setup()
        assert marcher.dt == 0.001
        assert marcher.num_steps == int(0.1 / 0.001)

    def test_setup_twice_rejected(self, marcher):
        marcher.setup()
        with pytest.raises(RuntimeError):
            marcher.setup()

    def test_cfl_warning(self, small_grid, small_source):
        """Test CFL > 1 warns by default."""
        dt = 2 * small_grid.stable_timestep()
        marcher = TimeMarcher(small_grid, small_source, tmax=1.0, dt=dt)
        with pytest.warns(CFLWarning, match="exceeds 1"):
            marcher.setup()
        assert marcher.state is MarcherState.READY
        assert marcher.cfl_number == pytest.approx(2.0)

    def test_strict_cfl(self, small_grid, small_source):
        """Test CFL > 1 fails setup in strict mode."""
        dt = 2 * small_grid.stable_timestep()
        marcher = TimeMarcher(small_grid, small_source, tmax=1.0, dt=dt, strict_cfl=True)
        with pytest.raises(ConfigurationError, match="CFL"):
            marcher.setup()
        assert marcher.state is MarcherState.FAILED

    def test_no_warning_at_cfl_one(self, marcher):
        with warnings.catch_warnings():
            warnings.simplefilter("error", CFLWarning)
            marcher.setup()

    @pytest.mark.parametrize(
        "kwargs",
        [{"tmax": 0.0}, {"tmax": 1e-6}, {"dt": -1.0}, {"diagnostic_interval": 0}],
    )
    def test_invalid_run_parameters(self, small_grid, small_source, kwargs):
        marcher = TimeMarcher(small_grid, small_source, **kwargs)
        with pytest.raises(ConfigurationError):
            marcher.setup()
        assert marcher.state is MarcherState.FAILED

    def test_boundary_source_rejected(self, small_grid):
        source = SourceModel((0, 3, 3), frequency=70.0)
        marcher = TimeMarcher(small_grid, source)
        with pytest.raises(ConfigurationError, match="boundary"):
            marcher.setup()

    def test_missing_material(self, small_source):
        grid = GridModel((7, 7, 7), (70.0, 70.0, 70.0))
        with pytest.raises(ConfigurationError, match="Material"):
            TimeMarcher(grid, small_source).setup()

    def test_properties_before_setup(self, marcher):
        with pytest.raises(RuntimeError, match="setup"):
            marcher.dt


class TestStepping:
    def test_step_before_setup(self, marcher):
        with pytest.raises(RuntimeError):
            marcher.step()

    def test_first_step_enters_stepping(self, marcher):
        marcher.setup()
        marcher.step()
        assert marcher.state is MarcherState.STEPPING
        assert marcher.sim.step == 1

    def test_run_completes(self, marcher):
        marcher.run()
        assert marcher.state is MarcherState.COMPLETED
        assert marcher.sim.step == marcher.num_steps
        with pytest.raises(RuntimeError):
            marcher.step()

    def test_diagnostics_every_interval(self, marcher):
        """Test a record is produced on every K-th step only."""
        records = marcher.run()
        assert [r.step for r in records] == list(range(5, marcher.num_steps + 1, 5))
        for r in records:
            assert r.time == pytest.approx((r.step - 1) * marcher.dt)
            assert r.num_steps == marcher.num_steps
            assert r.is_finite

    def test_diagnostics_match_wavefield(self, small_grid, small_source):
        marcher = TimeMarcher(
            small_grid, small_source, tmax=0.5, diagnostic_interval=5, solver=LinearSolver("direct")
        )
        marcher.setup()
        record = None
        while record is None:
            record = marcher.step()
        u = marcher.history.current
        assert record.max == pytest.approx(u.max())
        assert record.min == pytest.approx(u.min())
        assert record.norm == pytest.approx(np.linalg.norm(u))

    def test_snapshots_written(self, small_grid, small_source):
        sink = RecordingSink()
        marcher = TimeMarcher(
            small_grid, small_source, tmax=0.5, diagnostic_interval=5, snapshot_sink=sink
        )
        records = marcher.run()
        assert sorted(sink.snapshots) == [r.step for r in records]
        assert records[0].artifact == "memory:5"

    def test_reporter_called(self, small_grid, small_source):
        seen = []
        marcher = TimeMarcher(
            small_grid, small_source, tmax=0.5, diagnostic_interval=5, reporter=seen.append
        )
        marcher.run()
        assert seen == marcher.records

    def test_callback_receives_steps(self, marcher):
        steps = []
        marcher.run(callback=steps.append)
        assert steps == list(range(1, marcher.num_steps + 1))

    def test_history_feeds_next_step(self, marcher, monkeypatch):
        """Test the n-1 level at step k is the solution of step k-1."""
        marcher.setup()
        marcher.step()
        first = marcher.history.current.copy()
        marcher.step()
        second = marcher.history.current.copy()

        seen = []
        build = marcher.rhs_builder.build

        def spy(history, force):
            seen.append((history.previous.copy(), history.previous2.copy()))
            return build(history, force)

        monkeypatch.setattr(marcher.rhs_builder, "build", spy)
        marcher.step()

        previous, previous2 = seen[0]
        np.testing.assert_array_equal(previous, second)
        np.testing.assert_array_equal(previous2, first)

    def test_wavefield_shape(self, marcher, small_grid):
        marcher.setup()
        marcher.step()
        assert marcher.sim.wavefield.shape == small_grid.shape

    def test_partitioned_run_matches(self, small_grid, small_source):
        """Test a slab-partitioned run reproduces the single-slab run."""
        single = TimeMarcher(
            small_grid, small_source, tmax=0.3, solver=LinearSolver("direct"), diagnostic_interval=3
        )
        split = TimeMarcher(
            small_grid,
            small_source,
            tmax=0.3,
            solver=LinearSolver("direct"),
            diagnostic_interval=3,
            partition=SlabPartition(small_grid.shape, 3),
        )
        single.run()
        split.run()
        scale = np.abs(single.history.current).max()
        np.testing.assert_allclose(
            split.history.current, single.history.current, rtol=1e-9, atol=1e-9 * scale
        )


class TestFailures:
    def test_solve_failure(self, small_grid, small_source):
        """Test non-convergence moves to FAILED with the step attached."""
        marcher = TimeMarcher(small_grid, small_source, tmax=0.5, solver=FailingSolver(fail_at=3))
        with pytest.raises(SolveNonConvergence, match="step 3") as exc_info:
            marcher.run()
        assert exc_info.value.step == 3
        assert marcher.state is MarcherState.FAILED
        assert marcher.sim.step == 2
        assert marcher.failure is exc_info.value

    def test_step_prefix_matches_whole_number(self, small_grid, small_source):
        """Test "step 40" in a message does not count as naming step 4."""
        solver = FailingSolver(fail_at=4, message="residual stalled since step 40")
        marcher = TimeMarcher(small_grid, small_source, tmax=0.5, solver=solver)
        with pytest.raises(SolveNonConvergence) as exc_info:
            marcher.run()
        assert str(exc_info.value).startswith("step 4: ")
        assert exc_info.value.step == 4

    def test_no_steps_after_failure(self, small_grid, small_source):
        marcher = TimeMarcher(small_grid, small_source, tmax=0.5, solver=FailingSolver(fail_at=1))
        with pytest.raises(SolveNonConvergence):
            marcher.run()
        with pytest.raises(RuntimeError):
            marcher.step()

    def test_snapshot_failure(self, small_grid, small_source):
        """Test an OSError from the sink becomes SnapshotIOFailure."""
        marcher = TimeMarcher(
            small_grid, small_source, tmax=0.5, diagnostic_interval=4, snapshot_sink=FailingSink()
        )
        with pytest.raises(SnapshotIOFailure) as exc_info:
            marcher.run()
        assert exc_info.value.step == 4
        assert "read-only" in str(exc_info.value)
        assert marcher.state is MarcherState.FAILED

    def test_assembly_failure(self, marcher):
        """Test a corrupted history fails the step."""
        marcher.setup()
        marcher.history.previous = np.full(marcher.history.size, np.inf)
        with pytest.raises(AssemblyFailure, match="step 1"):
            marcher.step()
        assert marcher.state is MarcherState.FAILED


@pytest.mark.slow
class TestReferenceModel:
    """25³ nodes, 1000³ domain, stiffness 1800, density 1000, 70 Hz Ricker."""

    def test_reference_run(self, reference_grid, reference_source):
        dt = reference_grid.min_spacing / 1800.0
        sink = RecordingSink()
        marcher = TimeMarcher(reference_grid, reference_source, tmax=1.0, snapshot_sink=sink)
        marcher.setup()

        assert marcher.dt == pytest.approx(dt)
        assert marcher.num_steps == int(1.0 / marcher.dt)
        assert marcher.cfl_number <= 1.0 + 1e-12

        records = marcher.run()

        assert marcher.state is MarcherState.COMPLETED
        assert [r.step for r in records] == [40]
        u40 = sink.snapshots[40]
        assert np.all(np.isfinite(u40))
        assert 0.0 < np.linalg.norm(u40) < 1e12
        assert records[0].norm == pytest.approx(np.linalg.norm(u40))

    def test_source_node_responds(self, reference_grid, reference_source):
        """Test the wavefield is excited around the source."""
        marcher = TimeMarcher(reference_grid, reference_source, tmax=1.0)
        marcher.setup()
        for _ in range(15):
            marcher.step()
        u = marcher.sim.wavefield
        i, j, k = reference_source.location
        assert abs(u[i, j, k]) == pytest.approx(np.abs(u).max())
