"""Console output for time-marching runs.

Provides rich terminal UI for:
- A parameter table before the run (model, source, time stepping, CFL)
- One line per diagnostic step (max, min, norm, elapsed time)
- A progress bar with throughput and memory usage
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import psutil
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from acoustic_march.core.diagnostics import StepDiagnostics

if TYPE_CHECKING:
    from acoustic_march.core.marcher import TimeMarcher


def format_time(seconds: float) -> str:
    """Format time duration for display.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string like "1m 23s" or "2h 15m"
    """
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs:02d}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes:02d}m"


class ConsoleReporter:
    """Print each diagnostic record as one console line.

    Example:
        >>> marcher = TimeMarcher(grid, source, reporter=ConsoleReporter(console))
    """

    def __init__(self, console: Console, show_artifact: bool = False):
        self.console = console
        self.show_artifact = show_artifact

    def __call__(self, record: StepDiagnostics) -> None:
        line = (
            f"step {record.step:>6d}/{record.num_steps}  "
            f"t={record.time:.4e}  "
            f"max={record.max: .6e}  min={record.min: .6e}  "
            f"norm={record.norm:.6e}  "
            f"elapsed={format_time(record.elapsed)}"
        )
        if self.show_artifact and record.artifact is not None:
            line += f"  -> {record.artifact}"
        style = None if record.is_finite else "bold red"
        self.console.print(line, style=style, highlight=False)


class SimulationProgress:
    """Real-time progress display for a time-marching run.

    Shows a progress bar with:
    - Current step and total steps
    - Elapsed time and ETA
    - Throughput in node updates per second
    - Current and peak memory usage

    Example:
        >>> progress = SimulationProgress(console, marcher)
        >>> marcher.run(callback=progress.update)
    """

    def __init__(self, console: Console, marcher: TimeMarcher, update_interval: float = 0.1):
        """Initialize progress display.

        Args:
            console: Rich console instance
            marcher: Time marcher, already set up
            update_interval: Minimum time between updates (seconds)
        """
        self.console = console
        self.marcher = marcher
        self.num_steps = marcher.num_steps
        self.update_interval = update_interval

        self.start_time = time.time()
        self.last_update = 0.0
        self.peak_memory = 0.0
        self._finished = False

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("•"),
            TimeRemainingColumn(),
            console=console,
        )

        self.task = self.progress.add_task("Marching", total=self.num_steps)
        self.progress.start()

    def update(self, step: int):
        """Update for a completed step.

        Rate-limited to ``update_interval``; the final step always updates.

        Args:
            step: Completed step number (1-based)
        """
        current_time = time.time()
        if current_time - self.last_update < self.update_interval and step < self.num_steps:
            return

        self.progress.update(self.task, completed=step)

        elapsed = current_time - self.start_time
        if elapsed > 0:
            throughput = step * self.marcher.grid.num_nodes / elapsed / 1e6
        else:
            throughput = 0.0

        current_memory = psutil.Process().memory_info().rss / (1024**3)
        self.peak_memory = max(self.peak_memory, current_memory)

        self.progress.update(
            self.task,
            description=(
                f"Marching [dim]{throughput:.2f} Mnodes/s, "
                f"{current_memory:.2f} GB (peak {self.peak_memory:.2f} GB)[/dim]"
            ),
        )
        self.last_update = current_time

    def finish(self):
        """Stop the progress bar. Safe to call more than once."""
        if self._finished:
            return
        self.progress.stop()
        self._finished = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()


def print_simulation_info(console: Console, marcher: TimeMarcher, output=None):
    """Print run parameters before marching.

    Args:
        console: Rich console instance
        marcher: Time marcher, already set up
        output: Snapshot destination shown in the table
    """
    grid = marcher.grid
    source = marcher.source
    nx, ny, nz = grid.shape
    dx, dy, dz = grid.spacing
    material = grid.require_material()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="white")

    table.add_section()
    table.add_row("[bold]Model[/bold]", "")
    table.add_row("Grid", f"{nx} × {ny} × {nz} ({grid.num_nodes:,} nodes)")
    table.add_row("Extents", " × ".join(f"{e:g}" for e in grid.extents))
    table.add_row("Spacing", f"dx={dx:g}  dy={dy:g}  dz={dz:g}")
    if material.is_homogeneous:
        table.add_row("Stiffness", f"{grid.max_wave_speed:g}")
        table.add_row("Density", f"{float(material.density.flat[0]):g}")
    else:
        table.add_row("Stiffness", f"{grid.min_wave_speed:g} – {grid.max_wave_speed:g}")
        table.add_row(
            "Density", f"{float(material.density.min()):g} – {float(material.density.max()):g}"
        )
    table.add_row("Partitions", str(marcher.partition.num_parts))

    table.add_section()
    table.add_row("[bold]Source[/bold]", "")
    table.add_row("Location", f"({', '.join(str(i) for i in source.location)})")
    table.add_row("Wavelet", f"{source.wavelet}, f0={source.frequency:g} Hz, t0={source.t0:.4g} s")
    table.add_row("Amplitude", f"{source.amplitude:g}")
    table.add_row("Angle", f"{source.angle:g}°")
    table.add_row("λmax", f"{source.max_wavelength(grid):g}")
    table.add_row("Points/λ", f"{source.points_per_wavelength(grid):.1f}")

    table.add_section()
    table.add_row("[bold]Time stepping[/bold]", "")
    table.add_row("Timestep", f"{marcher.dt:.4e} s")
    table.add_row("Duration", f"{marcher.num_steps} steps ({marcher.tmax:g} s)")
    table.add_row("Interval", f"every {marcher.diagnostic_interval} steps")
    table.add_row("Solver", repr(marcher.solver))

    cfl = marcher.cfl_number
    cfl_style = "red" if cfl > 1.0 else "green"
    table.add_row("CFL", f"[{cfl_style}]{cfl:.4f}[/{cfl_style}]")

    if output is not None:
        table.add_row("Output", str(output))

    console.print(table)
    console.print()
