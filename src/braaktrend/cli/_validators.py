"""Shared argparse type validators for CLI parameter bounds checking.

These validators produce clear error messages when users pass invalid
values (e.g., ``--top-n 0``, ``--n-jobs 0``). They are intended to be used
as the ``type=`` argument in ``add_argument()``.
"""

from __future__ import annotations

import argparse


def _positive_int(value: str) -> int:
    """argparse type for positive integers (> 0)."""
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return ivalue


def _worker_count(value: str) -> int:
    """argparse type for joblib worker counts (positive, or negative for 'all but')."""
    ivalue = int(value)
    if ivalue == 0:
        raise argparse.ArgumentTypeError("n-jobs must be non-zero (use -1 for all cores)")
    return ivalue
