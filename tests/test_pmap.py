import threading
import time

import pytest

from payee_vetting.pmap import p_map_keyed


def test_never_exceeds_concurrency() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def mapper(x: int) -> int:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.005)
        with lock:
            active -= 1
        return x * 10

    results = p_map_keyed(range(12), mapper, concurrency=3)

    assert results.values == {x: x * 10 for x in range(12)}
    assert peak <= 3


def test_results_follow_key_order_not_completion_order() -> None:
    def mapper(x: int) -> int:
        time.sleep(0.001 * (5 - x))
        return x

    results = p_map_keyed(range(5), mapper, concurrency=5)
    assert list(results.values) == [0, 1, 2, 3, 4]


def test_single_worker_calls_in_key_order() -> None:
    calls: list[str] = []
    p_map_keyed(["c", "a", "b"], calls.append, concurrency=1)
    assert calls == ["c", "a", "b"]


@pytest.mark.parametrize("concurrency", [0, -1])
def test_rejects_non_positive_concurrency(concurrency: int) -> None:
    with pytest.raises(ValueError):
        p_map_keyed([1], lambda x: x, concurrency=concurrency)


def test_keyed_results_are_ordered_by_key_and_record_failures() -> None:
    calls: list[str] = []
    lock = threading.Lock()

    def mapper(key: str) -> str:
        with lock:
            calls.append(key)
        if key == "b":
            raise KeyError(key)
        time.sleep(0.002 if key == "a" else 0)
        return key.upper()

    results = p_map_keyed(["a", "b", "c", "a"], mapper, concurrency=3)

    assert list(results.values) == ["a", "c"]
    assert results.values == {"a": "A", "c": "C"}
    assert list(results.errors) == ["b"]
    assert not results.ok
    assert sorted(calls) == ["a", "b", "c"]


def test_keyed_with_no_keys() -> None:
    results = p_map_keyed([], str, concurrency=2)
    assert results.ok and results.values == {}
