"""automate – keeps the most profitable mining configuration running on one miner."""
from __future__ import annotations

__version__ = "0.1.0"

from .errors import FatalError, NoViableOptimization, UnkillableProcess
from .launch import LaunchSpec, change_combination
from .selector import Selection, select_best
from .supervisor import ProcessSupervisor

__all__ = [
    "__version__",
    "FatalError",
    "NoViableOptimization",
    "UnkillableProcess",
    "LaunchSpec",
    "change_combination",
    "Selection",
    "select_best",
    "ProcessSupervisor",
]
