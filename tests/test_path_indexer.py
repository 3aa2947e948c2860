from __future__ import annotations

import pytest

from pybonsai import ABSENT, PathIndexer, all_paths


def test_all_paths_includes_leaves_and_intermediate_nodes() -> None:
    tree = {"user": {"name": "Ada", "tags": ["x", "y"]}, "empty": {}, "none": None}

    assert all_paths(tree) == [
        "user",
        "user/name",
        "user/tags",
        "user/tags/0",
        "user/tags/1",
        "empty",
        "none",
    ]


def test_all_paths_of_scalar_and_absent() -> None:
    assert all_paths(5) == []
    assert all_paths(5, "n") == ["n"]
    assert all_paths(ABSENT, "n") == []
    assert all_paths("text", "s") == ["s"]


def test_indexer_matches_uncached_enumeration() -> None:
    tree = {"a": {"b": [1, {"c": None}]}, "d": "x"}
    indexer = PathIndexer()

    assert indexer.index(tree) == all_paths(tree)
    assert indexer.index(tree["a"], "a") == all_paths(tree["a"], "a")


def test_indexer_memoises_by_identity() -> None:
    tree = {"a": {"b": 1}}
    indexer = PathIndexer()

    indexer.index(tree)
    misses = indexer.misses
    indexer.index(tree)

    assert indexer.misses == misses
    assert indexer.hits >= 1


def test_equal_but_distinct_objects_are_indexed_separately() -> None:
    indexer = PathIndexer()
    first = {"a": 1}
    second = {"b": 2}

    assert indexer.index(first) == ["a"]
    assert indexer.index(second) == ["b"]


def test_indexer_cache_is_bounded() -> None:
    indexer = PathIndexer(maxsize=3)
    trees = [{"k": {"v": i}} for i in range(10)]

    for tree in trees:
        indexer.index(tree)

    assert len(indexer) <= 3
    # Evicted entries are simply recomputed.
    assert indexer.index(trees[0]) == ["k", "k/v"]


def test_invalidate_and_clear() -> None:
    tree = {"a": {"b": 1}}
    indexer = PathIndexer()
    indexer.index(tree)
    before = len(indexer)

    indexer.invalidate(tree)
    assert len(indexer) == before - 1
    indexer.invalidate({"unrelated": 1})

    indexer.clear()
    assert len(indexer) == 0
    assert indexer.hits == 0


def test_indexer_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        PathIndexer(maxsize=0)
