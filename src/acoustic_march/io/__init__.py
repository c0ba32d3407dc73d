"""Snapshot writers and readers."""

from acoustic_march.io.hdf5 import HDF5SnapshotReader, HDF5SnapshotWriter
from acoustic_march.io.matlab import MatlabSnapshotWriter, load_matlab_snapshot

__all__ = [
    "MatlabSnapshotWriter",
    "load_matlab_snapshot",
    "HDF5SnapshotWriter",
    "HDF5SnapshotReader",
]
