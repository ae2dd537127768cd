"""Dispatch of independent units of work.

Stages split their work into independent units (one per feature, or one
per batch x feature pair). Each unit reads shared, read-only inputs and
returns its own result; the caller assembles results in unit order, so no
locking is required.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

U = TypeVar("U")
R = TypeVar("R")


def run_units(
    func: Callable[[U], R],
    units: Sequence[U],
    n_workers: int = 1,
    logger: Optional[logging.Logger] = None,
    label: str = "units",
) -> List[R]:
    """Apply ``func`` to every unit, optionally across a thread pool.

    Parameters
    ----------
    func : Callable
        Worker function. Must not mutate shared state.
    units : Sequence
        Units of work.
    n_workers : int
        Number of worker threads (1 = sequential).
    logger : logging.Logger, optional
        Logger for progress messages.
    label : str
        Unit description used in log messages.

    Returns
    -------
    List
        Results in the same order as ``units``.
    """
    _logger = logger or logging.getLogger(__name__)

    if n_workers <= 1 or len(units) <= 1:
        return [func(unit) for unit in units]

    _logger.debug("Dispatching %d %s to %d workers", len(units), label, n_workers)
    start_time = time.time()

    results: List[Optional[R]] = [None] * len(units)
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = {executor.submit(func, unit): idx for idx, unit in enumerate(units)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    _logger.debug(
        "Processed %d %s in %.2f seconds", len(units), label, time.time() - start_time
    )
    return results  # type: ignore[return-value]
