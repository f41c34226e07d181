"""Bounded concurrent map over a ``ThreadPoolExecutor``, in the style of ``p-map``.

``p_map_keyed()`` calls ``mapper`` once per distinct key with at most
``concurrency`` calls in flight. A failure is recorded against its key
instead of aborting the batch, and results come back in key order no matter
which call finishes first.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Generic, TypeVar

OutT = TypeVar("OutT")
KeyT = TypeVar("KeyT", bound=Hashable)


def _run_window(
    items: Sequence[KeyT],
    mapper: Callable[[KeyT], OutT],
    *,
    concurrency: int,
    on_result: Callable[[int, OutT], None],
    on_error: Callable[[int, Exception], None],
) -> None:
    """Drive a sliding submission window over ``items``."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(items)
    future_to_idx: dict[Future, int] = {}

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    on_result(idx, fut.result())
                except Exception as e:  # noqa: BLE001
                    on_error(idx, e)

            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)


@dataclass
class KeyedResults(Generic[KeyT, OutT]):
    """Outcome of :func:`p_map_keyed`, indexed by originating key.

    Both mappings iterate in input-key order regardless of completion order.
    """

    values: dict[KeyT, OutT] = field(default_factory=dict)
    errors: dict[KeyT, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def p_map_keyed(
    keys: Iterable[KeyT],
    mapper: Callable[[KeyT], OutT],
    *,
    concurrency: int,
) -> KeyedResults[KeyT, OutT]:
    """Run ``mapper(key)`` for each distinct key; never raises for mapper errors.

    Duplicate keys are called once. With ``concurrency=1`` calls run one at a
    time in key order.
    """

    ordered = list(dict.fromkeys(keys))
    values: dict[int, OutT] = {}
    errors: dict[int, Exception] = {}

    _run_window(
        ordered,
        mapper,
        concurrency=concurrency,
        on_result=values.__setitem__,
        on_error=errors.__setitem__,
    )

    out: KeyedResults[KeyT, OutT] = KeyedResults()
    for i, key in enumerate(ordered):
        if i in values:
            out.values[key] = values[i]
        elif i in errors:
            out.errors[key] = errors[i]
    return out


__all__ = ["KeyedResults", "p_map_keyed"]
