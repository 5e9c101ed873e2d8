"""
Fork-join helpers for shared-memory data-parallel passes.

Every pass splits an index range into contiguous chunks, hands each chunk to a
worker thread and joins before returning, so the return of a call is the
barrier between phases. Chunk bodies are vectorised torch expressions over
tensor slices; torch releases the GIL inside its kernels, which is where the
actual concurrency comes from. With one worker everything runs inline.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

import torch
from torch import Tensor

from .utils import resolve_num_workers


class ForkJoinPool:
    """Thread pool exposing ``parallel_for``/``parallel_sum``/``single``/``sections``."""

    def __init__(self, num_workers: Optional[int] = None, *, min_chunk: int = 4096) -> None:
        self.num_workers = resolve_num_workers(num_workers)
        self.min_chunk = max(1, int(min_chunk))
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "ForkJoinPool":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.num_workers)
        return self._executor

    def chunks(self, n: int) -> List[Tuple[int, int]]:
        """Contiguous ``[start, stop)`` ranges covering ``[0, n)``."""

        if n <= 0:
            return []
        n_chunks = min(self.num_workers, max(1, -(-n // self.min_chunk)))
        size = -(-n // n_chunks)
        return [(s, min(s + size, n)) for s in range(0, n, size)]

    def parallel_for(self, n: int, body: Callable[[int, int], None]) -> None:
        """Run ``body(start, stop)`` over ``[0, n)``; returns once every chunk is done."""

        ranges = self.chunks(n)
        if len(ranges) <= 1:
            for start, stop in ranges:
                body(start, stop)
            return
        futures = [self._pool().submit(body, start, stop) for start, stop in ranges]
        for fut in futures:
            fut.result()

    def parallel_sum(self, n: int, partial: Callable[[int, int], Tensor]) -> Tensor:
        """Chunked reduction; partial sums are combined in chunk order."""

        ranges = self.chunks(n)
        if not ranges:
            return torch.zeros(())
        if len(ranges) == 1:
            return partial(*ranges[0])
        futures = [self._pool().submit(partial, start, stop) for start, stop in ranges]
        total = futures[0].result()
        for fut in futures[1:]:
            total = total + fut.result()
        return total

    def single(self, fn: Callable[[], object]) -> object:
        """Run ``fn`` once on the calling thread; no chunk of any pass is in flight."""

        return fn()

    def sections(self, *fns: Optional[Callable[[], object]]) -> List[object]:
        """Run independent callables concurrently and join.

        Callers must guarantee that no two sections write overlapping memory
        and that no section reads memory another one writes. Sections must
        not submit work to this pool themselves.
        """

        active: Sequence[Callable[[], object]] = [fn for fn in fns if fn is not None]
        if self.num_workers <= 1 or len(active) <= 1:
            return [fn() for fn in active]
        futures = [self._pool().submit(fn) for fn in active]
        return [fut.result() for fut in futures]


__all__ = ["ForkJoinPool"]
