"""Parallel group executor: concurrent fan-out with an ordered join.

All members start concurrently and the call returns only once every member
is terminal. A failing member never cancels its siblings, and ``result[i]``
always corresponds to ``thunks[i]`` whatever the completion order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait

from process_orchestrator.core.errors import EffectError
from process_orchestrator.runtime.effects import EffectOutcome

logger = logging.getLogger(__name__)

EffectThunk = Callable[[], EffectOutcome]


class ParallelGroupExecutor:
    def __init__(self, max_workers: int = 8) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers

    def run_all(self, thunks: Sequence[EffectThunk]) -> list[EffectOutcome]:
        if not thunks:
            return []

        workers = min(self.max_workers, len(thunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="parallel-group") as pool:
            futures = [pool.submit(thunk) for thunk in thunks]
            wait(futures)

        results: list[EffectOutcome] = []
        unexpected: BaseException | None = None
        for idx, future in enumerate(futures):
            exc = future.exception()
            if exc is None:
                results.append(future.result())
                continue
            if isinstance(exc, EffectError):
                results.append(
                    EffectOutcome(
                        effect_id=exc.effect_id or f"member-{idx}",
                        task_name=exc.task_name or "",
                        ok=False,
                        error=exc,
                    )
                )
                continue
            logger.error(
                "Parallel group member raised",
                extra={"member": idx, "error": f"{type(exc).__name__}: {exc}"},
            )
            if unexpected is None:
                unexpected = exc

        # Programming errors surface only after the join so siblings still finish.
        if unexpected is not None:
            raise unexpected

        failed = sum(1 for r in results if not r.ok)
        logger.debug(
            "Parallel group joined", extra={"members": len(results), "failed": failed}
        )
        return results
