"""Shared test helpers."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, List

from src.services.compatibility_service import subtract_years


def years_ago(years: int) -> date:
    """Birthday giving an age of exactly ``years`` today."""
    return subtract_years(date.today(), years)


def run_concurrently(*calls: Callable[[], Any]) -> List[Any]:
    """Start every call on its own thread at the same moment and return results in order."""
    barrier = threading.Barrier(len(calls))

    def _start(call: Callable[[], Any]) -> Any:
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(_start, call) for call in calls]
        return [future.result(timeout=30) for future in futures]
