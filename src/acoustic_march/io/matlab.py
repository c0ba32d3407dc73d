"""ASCII MATLAB snapshot files.

Each snapshot is written as a standalone ``.m`` script assigning a column
vector, one value per line, which ``run('tmp_Bvec_40.m')`` loads in MATLAB or
Octave:

    %Vec Object: ux
    %  step: 40
    ux = [
    0.0000000000000000e+00
    ...
    ];
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from acoustic_march.errors import ConfigurationError, SnapshotIOFailure

DEFAULT_PATTERN = "tmp_Bvec_{step}.m"


class MatlabSnapshotWriter:
    """Write each snapshot to its own ``.m`` file.

    Args:
        output_dir: Directory for the files (created if missing)
        pattern: File name pattern; must contain ``{step}``
        variable: MATLAB variable name assigned in the file

    Example:
        >>> writer = MatlabSnapshotWriter("out")
        >>> writer.write(u, 40)
        PosixPath('out/tmp_Bvec_40.m')
    """

    def __init__(
        self,
        output_dir: str | Path = ".",
        pattern: str = DEFAULT_PATTERN,
        variable: str = "ux",
    ):
        if "{step" not in pattern:
            raise ConfigurationError(
                f"Snapshot pattern must contain '{{step}}', got '{pattern}'"
            )
        if not variable.isidentifier():
            raise ConfigurationError(f"'{variable}' is not a valid MATLAB variable name")
        self.output_dir = Path(output_dir)
        self.pattern = pattern
        self.variable = variable
        self.written: list[Path] = []

    def path_for(self, step: int) -> Path:
        return self.output_dir / self.pattern.format(step=step)

    def write(self, vector: NDArray[np.floating], step: int) -> Path:
        """Write one snapshot.

        Returns:
            Path of the written file

        Raises:
            SnapshotIOFailure: If the file cannot be written
        """
        path = self.path_for(step)
        values = np.asarray(vector, dtype=np.float64).ravel()
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                f.write(f"%Vec Object: {self.variable}\n")
                f.write(f"%  step: {step}\n")
                f.write(f"{self.variable} = [\n")
                np.savetxt(f, values, fmt="%.16e")
                f.write("];\n")
        except OSError as e:
            raise SnapshotIOFailure(
                f"Cannot write snapshot {path}: {e}", step=step, path=path
            ) from e

        self.written.append(path)
        return path


def load_matlab_snapshot(path: str | Path) -> NDArray[np.float64]:
    """Read a vector written by MatlabSnapshotWriter.

    Args:
        path: Path to the ``.m`` file

    Returns:
        Flat array of values
    """
    values = []
    inside = False
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("%"):
                continue
            if line.endswith("["):
                inside = True
                continue
            if line.startswith("]"):
                break
            if inside:
                values.append(float(line))
    if not inside:
        raise ValueError(f"{path} does not contain a vector assignment")
    return np.array(values, dtype=np.float64)
