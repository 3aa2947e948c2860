from __future__ import annotations

from typing import Any

import pytest

from pybonsai import ABSENT, EventKind, PathStore, StoreConfig, Veto, validator


@pytest.mark.asyncio
async def test_set_then_get_round_trip_without_middleware() -> None:
    store = PathStore()
    for path, value in [
        ("a", 1),
        ("user/name", "Ada"),
        ("deep/er/path", {"x": [1, 2]}),
        ("flag", False),
        ("nothing", None),
    ]:
        outcome = await store.set(path, value)
        assert outcome.committed
        assert store.get(path) == value


def test_get_missing_path_returns_absent() -> None:
    store = PathStore({"user": {"name": "Ada"}, "count": 3})

    assert store.get("missing") is ABSENT
    assert store.get("user/age") is ABSENT
    assert store.get("user/name/first") is ABSENT
    assert store.get("count/x") is ABSENT
    assert store.has("user/name")
    assert not store.has("user/age")
    assert not ABSENT
    # Reads never create intermediate nodes.
    assert "missing" not in store.get("")


def test_paths_are_normalised_identically_for_reads_and_writes() -> None:
    store = PathStore({"user": {"name": "Ada"}})

    assert store.get("/user//name/") == "Ada"
    assert store.get(["user", "name"]) == "Ada"
    assert store.get("") == {"user": {"name": "Ada"}}


@pytest.mark.asyncio
async def test_unnormalised_write_lands_on_normalised_path() -> None:
    store = PathStore()
    seen: list[Any] = []
    store.subscribe("user/name", seen.append)

    await store.set("//user/name/", "Grace")

    assert store.get("user/name") == "Grace"
    assert seen == ["Grace"]


@pytest.mark.asyncio
async def test_empty_path_replaces_whole_root() -> None:
    store = PathStore({"old": 1})

    await store.set("", {"new": 2})

    assert store.get("") == {"new": 2}
    assert store.get("old") is ABSENT


@pytest.mark.asyncio
async def test_missing_intermediates_created_as_mappings() -> None:
    store = PathStore()

    await store.set("a/b/c", 1)

    assert store.get("a") == {"b": {"c": 1}}


@pytest.mark.asyncio
async def test_scalar_intermediate_is_replaced_by_mapping() -> None:
    store = PathStore({"a": 5})

    outcome = await store.set("a/b", 1)

    assert outcome.committed
    assert store.get("a") == {"b": 1}


@pytest.mark.asyncio
async def test_sequences_are_indexable() -> None:
    store = PathStore({"items": [1, 2]})

    assert store.get("items/1") == 2
    assert store.get("items/2") is ABSENT
    assert store.get("items/x") is ABSENT

    assert (await store.set("items/0", 10)).committed
    assert (await store.set("items/2", 3)).committed
    assert store.get("items") == [10, 2, 3]


@pytest.mark.asyncio
async def test_unplaceable_sequence_write_is_rejected_without_mutation() -> None:
    store = PathStore({"items": [1, 2]})
    calls: list[Any] = []
    store.subscribe("", calls.append)

    outcome = await store.set("items/9", 0)
    named = await store.set("items/name", 0)

    assert not outcome.committed
    assert "sequence" in (outcome.reason or "")
    assert not named.committed
    assert store.get("items") == [1, 2]
    assert calls == []
    assert [e.kind for e in store.devlog.entries()] == [EventKind.REJECTED, EventKind.REJECTED]


@pytest.mark.asyncio
async def test_commits_are_copy_on_write() -> None:
    store = PathStore({"a": {"b": 1}, "other": {"x": 1}})
    before = store.get("")
    other = store.get("other")

    await store.set("a/b", 2)

    assert before == {"a": {"b": 1}, "other": {"x": 1}}
    assert store.get("a/b") == 2
    assert store.get("other") is other
    assert store.get("") is not before


@pytest.mark.asyncio
async def test_committed_value_is_owned_by_store() -> None:
    store = PathStore()
    value = {"tags": ["a"]}

    await store.set("user", value)
    value["tags"].append("b")

    assert store.get("user/tags") == ["a"]


def test_initial_state_is_copied() -> None:
    initial = {"user": {"name": "Ada"}}
    store = PathStore(initial)
    initial["user"]["name"] = "changed"

    assert store.get("user/name") == "Ada"


@pytest.mark.asyncio
async def test_nested_write_notifies_ancestor_with_current_value() -> None:
    store = PathStore()
    seen: list[Any] = []

    def on_a(value: Any) -> None:
        # get() must already reflect the commit inside the callback.
        seen.append((value, store.get("a")))

    store.subscribe("a", on_a)
    await store.set("a/b/c", 1)

    assert seen == [({"b": {"c": 1}}, {"b": {"c": 1}})]


@pytest.mark.asyncio
async def test_subscriber_on_root_sees_every_change() -> None:
    store = PathStore()
    seen: list[Any] = []
    store.subscribe("", seen.append)

    await store.set("x", 1)
    await store.set("y/z", 2)

    assert seen == [{"x": 1}, {"x": 1, "y": {"z": 2}}]


@pytest.mark.asyncio
async def test_prefix_match_is_segment_wise() -> None:
    store = PathStore()
    user: list[Any] = []
    store.subscribe("user", user.append)

    await store.set("user2/name", "Bob")
    await store.set("username", "bob")
    assert user == []

    await store.set("user/name", "Ada")
    assert user == [{"name": "Ada"}]


@pytest.mark.asyncio
async def test_descendant_subscriber_not_notified_of_sibling_change() -> None:
    store = PathStore({"user": {"name": "Ada", "age": 36}})
    name: list[Any] = []
    store.subscribe("user/name", name.append)

    await store.set("user/age", 37)

    assert name == []


@pytest.mark.asyncio
async def test_unsubscribe_removes_only_that_registration_and_is_idempotent() -> None:
    store = PathStore()
    first: list[Any] = []
    second: list[Any] = []
    unsubscribe = store.subscribe("a", first.append)
    store.subscribe("a", second.append)

    unsubscribe()
    unsubscribe()
    await store.set("a", 1)

    assert first == []
    assert second == [1]
    assert store.subscriber_count == 1


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_fan_out() -> None:
    store = PathStore()
    seen: list[Any] = []

    def broken(value: Any) -> None:
        raise RuntimeError("boom")

    store.subscribe("a", broken)
    store.subscribe("a", seen.append)

    outcome = await store.set("a", 1)

    assert outcome.committed
    assert seen == [1]
    faults = store.devlog.entries(EventKind.SUBSCRIBER_FAULT)
    assert len(faults) == 1
    assert "boom" in (faults[0].reason or "")


@pytest.mark.asyncio
async def test_veto_leaves_state_and_subscribers_untouched() -> None:
    store = PathStore({"a": {"b": 1}})
    calls: list[Any] = []
    for prefix in ("", "a", "a/b"):
        store.subscribe(prefix, calls.append)
    store.add_middleware(lambda path, value, prev: Veto("no"))

    before = store.get("a/b")
    outcome = await store.set("a/b", 2)

    assert not outcome.committed
    assert outcome.reason == "no"
    assert store.get("a/b") == before
    assert calls == []


@pytest.mark.asyncio
async def test_removing_middleware_lets_vetoed_write_through() -> None:
    store = PathStore()
    positive = validator(lambda path, value, prev: value >= 0 or "must be positive")
    store.add_middleware(positive)

    blocked = await store.set("n", -1)
    assert not blocked.committed
    assert blocked.reason == "must be positive"

    assert store.remove_middleware(positive)
    assert (await store.set("n", -1)).committed
    assert store.get("n") == -1


def test_middleware_registry_operations() -> None:
    store = PathStore()

    def first(path: str, value: Any, prev: Any) -> Any:
        return None

    def second(path: str, value: Any, prev: Any) -> Any:
        return None

    store.add_middleware(first)
    store.add_middleware(second)
    listed = store.list_middleware()
    listed.clear()

    assert store.list_middleware() == [first, second]
    assert not store.remove_middleware(lambda *a: None)
    store.clear_middleware()
    assert store.list_middleware() == []


@pytest.mark.asyncio
async def test_initialize_is_a_full_reset() -> None:
    store = PathStore({"a": 1}, middleware=[lambda path, value, prev: Veto()])

    store.initialize({"b": 2})

    assert store.get("") == {"b": 2}
    assert store.list_middleware() == []
    assert (await store.set("c", 3)).committed


@pytest.mark.asyncio
async def test_transforming_middleware_value_is_committed() -> None:
    store = PathStore(middleware=[lambda path, value, prev: value * 2])
    seen: list[Any] = []
    store.subscribe("n", seen.append)

    await store.set("n", 21)

    assert store.get("n") == 42
    assert seen == [42]


@pytest.mark.asyncio
async def test_middleware_receives_normalised_path_and_previous_value() -> None:
    store = PathStore({"user": {"name": "Ada"}})
    calls: list[tuple[str, Any, Any]] = []

    def record(path: str, value: Any, prev: Any) -> None:
        calls.append((path, value, prev))

    store.add_middleware(record)
    await store.set("/user/name/", "Grace")
    await store.set("user/age", 36)

    assert calls == [("user/name", "Grace", "Ada"), ("user/age", 36, ABSENT)]


@pytest.mark.asyncio
async def test_uncopyable_value_is_rejected() -> None:
    import threading

    store = PathStore()

    outcome = await store.set("lock", threading.Lock())

    assert not outcome.committed
    assert store.get("lock") is ABSENT


@pytest.mark.asyncio
async def test_paths_lists_every_path_under_prefix() -> None:
    store = PathStore({"user": {"name": "Ada", "tags": ["x"]}, "n": None})

    assert store.paths() == ["user", "user/name", "user/tags", "user/tags/0", "n"]
    assert store.paths("user/tags") == ["user/tags", "user/tags/0"]
    assert store.paths("missing") == []

    await store.set("user/age", 36)
    assert "user/age" in store.paths()


@pytest.mark.asyncio
async def test_dev_mode_records_commits() -> None:
    store = PathStore(config=StoreConfig(name="app", dev_mode=True))

    await store.set("a", 1)

    (event,) = store.devlog.entries()
    assert event.kind == EventKind.COMMIT
    assert event.store == "app"
    assert event.path == "a"


@pytest.mark.asyncio
async def test_commits_not_recorded_outside_dev_mode() -> None:
    store = PathStore()

    await store.set("a", 1)

    assert store.devlog.entries() == []


class _BrokenCopy:
    def __deepcopy__(self, memo: dict[int, Any]) -> Any:
        raise RuntimeError("refuses to be copied")


@pytest.mark.asyncio
async def test_value_failing_deepcopy_is_rejected() -> None:
    store = PathStore()

    outcome = await store.set("thing", _BrokenCopy())

    assert not outcome.committed
    assert "refuses to be copied" in (outcome.reason or "")
    assert store.get("thing") is ABSENT
    assert store.devlog.entries(EventKind.REJECTED)


def _blocking(next_fn: Any) -> Any:
    def handler(path: str, value: Any, prev: Any = None) -> Any:
        return Veto("blocked")

    return handler


@pytest.mark.asyncio
async def test_wrapper_style_middleware_can_be_removed() -> None:
    store = PathStore()
    store.add_middleware(_blocking)

    assert store.list_middleware() == [_blocking]
    assert not (await store.set("a", 1)).committed

    assert store.remove_middleware(_blocking)
    assert store.list_middleware() == []
    assert (await store.set("a", 1)).committed
    assert store.get("a") == 1


@pytest.mark.asyncio
async def test_wrapper_style_middleware_from_initialize_can_be_removed() -> None:
    store = PathStore(middleware=[_blocking])
    store.initialize({"b": 2}, [_blocking])

    assert store.list_middleware() == [_blocking]
    assert store.remove_middleware(_blocking)
    assert not store.remove_middleware(_blocking)
    assert (await store.set("a", 1)).committed
