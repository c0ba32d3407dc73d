"""Command-line tool for running acoustic time-marching simulations.

The acoustic-march CLI builds a run from defaults, an optional YAML config
file and command-line overrides, prints the run parameters, marches all steps
and writes periodic snapshots.
"""

import sys
import time
import warnings
from pathlib import Path

import click
from rich.console import Console

from acoustic_march.config import SNAPSHOT_FORMATS, SimulationConfig
from acoustic_march.core.marcher import MarcherState
from acoustic_march.core.solve import SOLVER_METHODS
from acoustic_march.core.source import WAVELETS
from acoustic_march.errors import CFLWarning, SimulationError

from .progress import ConsoleReporter, SimulationProgress, format_time, print_simulation_info

console = Console()


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)
@click.option("--nodes", type=(int, int, int), default=None, help="Node counts NX NY NZ")
@click.option("--extent", type=(float, float, float), default=None, help="Domain size LX LY LZ")
@click.option("--stiffness", type=float, help="Stiffness coefficient (wave speed)")
@click.option("--density", type=float, help="Density")
@click.option("--frequency", "-f", type=float, help="Source dominant frequency f0 (Hz)")
@click.option("--amplitude", type=float, help="Source amplitude")
@click.option("--angle", type=float, help="Source force angle (degrees)")
@click.option("--wavelet", type=click.Choice(WAVELETS), help="Source time function")
@click.option("--tmax", type=float, help="Run duration (s)")
@click.option("--dt", type=float, help="Timestep (default: min spacing / max wave speed)")
@click.option("--interval", type=int, help="Diagnostics and snapshots every N steps")
@click.option(
    "--output-dir", "-o", type=click.Path(file_okay=False, path_type=Path), help="Snapshot directory"
)
@click.option("--format", "snapshot_format", type=click.Choice(SNAPSHOT_FORMATS), help="Snapshot format")
@click.option("--pattern", help="MATLAB snapshot file name pattern, e.g. 'tmp_Bvec_{step}.m'")
@click.option("--solver", type=click.Choice(SOLVER_METHODS), help="Linear solver method")
@click.option("--rtol", type=float, help="Iterative solver relative tolerance")
@click.option("--maxiter", type=int, help="Iterative solver iteration budget")
@click.option("--partitions", type=int, help="Number of slabs for parallel assembly")
@click.option("--strict-cfl", is_flag=True, help="Fail instead of warn when CFL > 1")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output with debug info")
@click.option("--dry-run", is_flag=True, help="Print run parameters without marching")
@click.option("--progress", is_flag=True, help="Show a progress bar")
@click.version_option(version="0.1.0", prog_name="acoustic-march")
def main(
    config_path: Path | None,
    nodes,
    extent,
    stiffness,
    density,
    frequency,
    amplitude,
    angle,
    wavelet,
    tmax,
    dt,
    interval,
    output_dir,
    snapshot_format,
    pattern,
    solver,
    rtol,
    maxiter,
    partitions,
    strict_cfl,
    verbose: bool,
    dry_run: bool,
    progress: bool,
):
    """Simulate a point-source acoustic wave on a 3D grid.

    Every option overrides the corresponding value from --config, which in
    turn overrides the built-in defaults (25³ nodes, 1000³ domain,
    stiffness 1800, density 1000, 70 Hz Ricker source, tmax 1 s).

    Example:

    \b
        acoustic-march --nodes 25 25 25 --tmax 1.0 -o out
        acoustic-march -c run.yaml --format hdf5 --progress
    """
    code = run_simulation(
        config_path,
        dict(
            nodes=nodes,
            extents=extent,
            stiffness=stiffness,
            density=density,
            tmax=tmax,
            dt=dt,
            partitions=partitions,
            strict_cfl=strict_cfl or None,
            source=dict(frequency=frequency, amplitude=amplitude, angle=angle, wavelet=wavelet),
            solver=dict(method=solver, rtol=rtol, maxiter=maxiter),
            output=dict(
                format=snapshot_format, directory=output_dir, pattern=pattern, interval=interval
            ),
        ),
        verbose=verbose,
        dry_run=dry_run,
        progress=progress,
    )
    sys.exit(code)


def run_simulation(
    config_path: Path | None,
    overrides: dict,
    verbose: bool = False,
    dry_run: bool = False,
    progress: bool = False,
) -> int:
    """Run one simulation and return the process exit code.

    Returns:
        0 on success, 1 on any simulation error, 130 on keyboard interrupt
    """
    marcher = None
    try:
        console.print("\n[bold]Acoustic time marching[/bold]", style="blue")
        console.print("─" * 60)

        config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
        config = config.override(**overrides)
        if verbose and config_path:
            console.print(f"Config: {config_path}")

        reporter = ConsoleReporter(console, show_artifact=verbose)
        marcher = config.build(reporter=reporter, with_sink=not dry_run)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", CFLWarning)
            marcher.setup()
        for w in caught:
            console.print(f"[yellow]Warning:[/yellow] {w.message}")

        output = None
        if config.output.format != "none":
            output = config.output.directory
        print_simulation_info(console, marcher, output)

        if dry_run:
            console.print("[yellow]Dry run - simulation not executed[/yellow]")
            return 0

        start_time = time.time()
        if progress:
            with SimulationProgress(console, marcher) as bar:
                marcher.run(callback=bar.update)
        else:
            marcher.run()
        runtime = time.time() - start_time

        console.print("─" * 60)
        console.print("✓ [bold green]Simulation complete![/bold green]")
        console.print(f"  Steps: {marcher.num_steps}")
        console.print(f"  Runtime: {format_time(runtime)}")
        if marcher.records:
            last = marcher.records[-1]
            console.print(f"  Final norm: {last.norm:.6e} (step {last.step})")
        if runtime > 0:
            throughput = marcher.num_steps * marcher.grid.num_nodes / runtime / 1e6
            console.print(f"  Average throughput: {throughput:.2f} Mnodes/s")
        if output is not None:
            console.print(f"  Output: {output}")
        return 0

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except SimulationError as e:
        stage = "Setup" if marcher is None or marcher.sim is None else "Simulation"
        console.print(f"\n[bold red]{stage} Error:[/bold red] {e}")
        if verbose:
            console.print_exception()
        return 1
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            console.print_exception()
        return 1
    finally:
        _close_sink(marcher)


def _close_sink(marcher) -> None:
    if marcher is None or marcher.snapshot_sink is None:
        return
    finalize = getattr(marcher.snapshot_sink, "finalize", None)
    if finalize is not None:
        completed = marcher.state is MarcherState.COMPLETED
        finalize(completed=completed)


if __name__ == "__main__":
    main()
