from __future__ import annotations

import unittest

from adguard_sync.models import Filter, RewriteEntry
from adguard_sync.sync.reconcile import DiffResult, diff


def _rewrite_key(entry: RewriteEntry) -> tuple[str, str]:
    return entry.key()


def _filter_key(item: Filter) -> str:
    return item.url


def _filter_equal(desired: Filter, current: Filter) -> bool:
    return desired.same_settings(current)


def _apply(replica: list[Filter], result: DiffResult[str, Filter]) -> list[Filter]:
    by_url = {item.url: item for item in replica}
    for key in result.removals:
        by_url.pop(key, None)
    by_url.update(result.additions)
    by_url.update(result.updates)
    return list(by_url.values())


class DiffTests(unittest.TestCase):
    def test_diff_of_snapshot_with_itself_is_empty(self) -> None:
        snapshot = [
            Filter(url="https://a.example/list.txt", name="A"),
            Filter(url="https://b.example/list.txt", name="B", enabled=False),
        ]
        result = diff(snapshot, list(snapshot), _filter_key, _filter_equal)
        self.assertTrue(result.is_empty)
        self.assertEqual(result.unchanged, 2)
        self.assertEqual(result.change_count, 0)

    def test_origin_only_entry_is_an_addition(self) -> None:
        origin = [RewriteEntry(domain="a.com", answer="1.1.1.1")]
        result = diff(origin, [], _rewrite_key, lambda a, b: a == b)
        self.assertEqual(list(result.additions), [("a.com", "1.1.1.1")])
        self.assertEqual(result.removals, {})
        self.assertEqual(result.updates, {})

    def test_replica_only_entry_is_a_removal_carrying_replica_item(self) -> None:
        origin = [Filter(url="x", name="X")]
        replica = [Filter(url="x", name="X", id=4), Filter(url="y", name="Y", id=9)]
        result = diff(origin, replica, _filter_key, _filter_equal)
        self.assertEqual(result.additions, {})
        self.assertEqual(result.updates, {})
        self.assertEqual(list(result.removals), ["y"])
        self.assertEqual(result.removals["y"].id, 9)
        self.assertEqual(result.unchanged, 1)

    def test_differing_payload_under_same_key_is_an_update_with_origin_value(self) -> None:
        origin = [Filter(url="x", name="renamed", enabled=False)]
        replica = [Filter(url="x", name="old name", enabled=True)]
        result = diff(origin, replica, _filter_key, _filter_equal)
        self.assertEqual(list(result.updates), ["x"])
        self.assertEqual(result.updates["x"].name, "renamed")
        self.assertFalse(result.updates["x"].enabled)

    def test_local_only_fields_do_not_trigger_update(self) -> None:
        origin = [Filter(url="x", name="X", id=1, rules_count=100)]
        replica = [Filter(url="x", name="X", id=7, rules_count=3)]
        result = diff(origin, replica, _filter_key, _filter_equal)
        self.assertTrue(result.is_empty)

    def test_keys_are_classified_exactly_once(self) -> None:
        origin = [Filter(url=url, name=url.upper()) for url in ("a", "b", "c", "d")]
        replica = [
            Filter(url="b", name="B"),
            Filter(url="c", name="changed"),
            Filter(url="e", name="E"),
        ]
        result = diff(origin, replica, _filter_key, _filter_equal)
        additions, removals, updates = set(result.additions), set(result.removals), set(result.updates)
        self.assertFalse(additions & removals)
        self.assertFalse(additions & updates)
        self.assertFalse(removals & updates)
        self.assertEqual(additions, {"a", "d"})
        self.assertEqual(removals, {"e"})
        self.assertEqual(updates, {"c"})
        self.assertEqual(len(removals) + len(updates) + result.unchanged, len(replica))
        self.assertEqual(len(additions) + len(updates) + result.unchanged, len(origin))

    def test_duplicate_keys_resolve_to_last_seen_and_are_reported(self) -> None:
        origin = [Filter(url="x", name="first"), Filter(url="x", name="second")]
        replica = [Filter(url="x", name="first")]
        result = diff(origin, replica, _filter_key, _filter_equal)
        self.assertEqual(result.updates["x"].name, "second")
        self.assertEqual(result.origin_duplicates, ("x",))
        self.assertEqual(result.replica_duplicates, ())

    def test_enumeration_order_follows_keys_not_input_order(self) -> None:
        origin = [Filter(url=url) for url in ("c", "a", "b")]
        reversed_origin = list(reversed(origin))
        first = diff(origin, [], _filter_key, _filter_equal)
        second = diff(reversed_origin, [], _filter_key, _filter_equal)
        self.assertEqual(list(first.additions), ["a", "b", "c"])
        self.assertEqual(list(first.additions), list(second.additions))

    def test_applying_diff_converges(self) -> None:
        origin = [
            Filter(url="a", name="A"),
            Filter(url="b", name="B", enabled=False),
            Filter(url="c", name="C"),
        ]
        replica = [
            Filter(url="b", name="B", enabled=True),
            Filter(url="d", name="D"),
        ]
        result = diff(origin, replica, _filter_key, _filter_equal)
        converged = _apply(replica, result)
        again = diff(origin, converged, _filter_key, _filter_equal)
        self.assertTrue(again.is_empty)
        self.assertEqual(again.unchanged, 3)


if __name__ == "__main__":
    unittest.main()
