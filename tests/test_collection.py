"""Tests for OutcomeCollection."""

import asyncio
import logging

from unwrapped import AsyncOutcome, Outcome, OutcomeCollection


async def value_after(value: object, seconds: float = 0.0) -> object:
    await asyncio.sleep(seconds)
    return value


async def error_after(error: object, seconds: float = 0.0) -> Outcome:
    await asyncio.sleep(seconds)
    return Outcome.err(error)


class TestAggregateState:
    """The collection reports any-loading while a tracked item loads."""

    def test_starts_settled(self) -> None:
        collection = OutcomeCollection()
        assert collection.state == "all-settled"
        assert len(collection) == 0

    async def test_loading_then_settled(self) -> None:
        states = []
        collection = OutcomeCollection()
        collection.listen(lambda c: states.append(c.state))

        upload = collection.add("a", AsyncOutcome.from_value_awaitable(value_after(1)))
        assert collection.state == "any-loading"
        assert "a" in collection

        await upload.wait_for_settled()
        assert collection.state == "all-settled"
        assert "a" not in collection
        assert states == ["any-loading", "all-settled"]

    async def test_stays_loading_until_last_item_settles(self) -> None:
        collection = OutcomeCollection()
        fast = collection.add("fast", AsyncOutcome.from_value_awaitable(value_after(1)))
        slow = collection.add("slow", AsyncOutcome.from_value_awaitable(value_after(2, 0.02)))

        await fast.wait_for_settled()
        assert collection.state == "any-loading"
        await slow.wait_for_settled()
        assert collection.state == "all-settled"

    async def test_kept_items_report_refetch_loading(self) -> None:
        collection = OutcomeCollection()
        outcome = collection.add(
            "report", AsyncOutcome.from_value_awaitable(value_after(1)), remove_on_settle=False
        )
        await outcome.wait_for_settled()
        assert collection.state == "all-settled"
        assert collection.items == [outcome]

        outcome.update_from_value_awaitable(value_after(2))
        assert collection.state == "any-loading"
        await outcome.wait_for_settled()
        assert collection.state == "all-settled"
        assert collection.get_all_success_values() == [2]

    def test_terminal_item_is_dropped_immediately(self) -> None:
        collection = OutcomeCollection()
        collection.add("done", AsyncOutcome.ok(1))
        assert len(collection) == 0
        assert collection.state == "all-settled"

    def test_terminal_item_is_kept_without_remove_on_settle(self) -> None:
        collection = OutcomeCollection()
        collection.add("done", AsyncOutcome.ok(1), remove_on_settle=False)
        assert collection.entries[0][0] == "done"


class TestManagingItems:
    async def test_replacing_a_key_stops_tracking_previous(self) -> None:
        collection = OutcomeCollection()
        old = collection.add("k", AsyncOutcome.from_value_awaitable(value_after("old", 0.02)))
        new = collection.add("k", AsyncOutcome.ok("new"), remove_on_settle=False)

        assert collection.items == [new]
        assert collection.state == "all-settled"
        await old.wait_for_settled()
        assert collection.items == [new]

    async def test_remove(self) -> None:
        collection = OutcomeCollection()
        outcome = collection.add("a", AsyncOutcome.from_value_awaitable(value_after(1)))
        assert collection.remove("a") is True
        assert collection.remove("a") is False
        assert collection.state == "all-settled"
        await outcome.wait_for_settled()
        assert len(collection) == 0

    async def test_clear(self) -> None:
        states = []
        collection = OutcomeCollection()
        first = collection.add("a", AsyncOutcome.from_value_awaitable(value_after(1)))
        collection.add("b", AsyncOutcome.from_value_awaitable(value_after(2)))
        collection.listen(lambda c: states.append(c.state))

        collection.clear()
        assert len(collection) == 0
        assert states == ["all-settled"]

        await first.wait_for_settled()
        assert states == ["all-settled"]

    def test_unsubscribe_listener(self) -> None:
        states = []
        collection = OutcomeCollection()
        unsubscribe = collection.listen(lambda c: states.append(c.state))
        unsubscribe()
        collection.add("a", AsyncOutcome.ok(1), remove_on_settle=False)
        assert states == []


class TestItemListeners:
    """on_item_success() and on_item_error() see settled items before removal."""

    async def test_on_item_success(self) -> None:
        seen = []
        collection = OutcomeCollection()
        collection.on_item_success(
            lambda outcome, key: seen.append((key, outcome.unwrap_or_none()))
        )

        upload = collection.add("avatar", AsyncOutcome.from_value_awaitable(value_after("ok")))
        await upload.wait_for_settled()
        assert seen == [("avatar", "ok")]

    async def test_on_item_error(self) -> None:
        seen = []
        collection = OutcomeCollection()
        collection.on_item_error(
            lambda outcome, key: seen.append((key, outcome.unwrap_error_or_none()))
        )

        upload = collection.add(
            "avatar", AsyncOutcome.from_result_awaitable(error_after("too big"))
        )
        await upload.wait_for_settled()
        assert seen == [("avatar", "too big")]


class TestQueries:
    async def test_filters(self) -> None:
        collection = OutcomeCollection()
        loading = collection.add(
            "loading",
            AsyncOutcome.from_value_awaitable(value_after(0, 0.01)),
            remove_on_settle=False,
        )
        collection.add("ok", AsyncOutcome.ok(1), remove_on_settle=False)
        collection.add("failed", AsyncOutcome.err("bad"), remove_on_settle=False)

        assert collection.any_loading()
        assert collection.get_all_loading() == [loading]
        assert collection.get_all_success_values() == [1]
        assert collection.get_all_error_values() == ["bad"]
        assert len(collection.get_all_success()) == 1
        assert len(collection.get_all_errors()) == 1
        assert collection.get_all_filtered_and_map(
            lambda outcome: not outcome.is_loading(), lambda outcome: outcome.state.status
        ) == ["success", "error"]

        futures = collection.get_all_loading_futures()
        assert await asyncio.gather(*futures) == [Outcome.ok(0)]

    async def test_debug_logs_each_broadcast(self, caplog) -> None:
        collection = OutcomeCollection()
        collection.debug("uploads")
        with caplog.at_level(logging.DEBUG, logger="unwrapped.collection"):
            outcome = collection.add("a", AsyncOutcome.from_value_awaitable(value_after(1)))
            await outcome.wait_for_settled()

        messages = [r.getMessage() for r in caplog.records if r.name == "unwrapped.collection"]
        assert any(m.startswith("uploads: state=any-loading") for m in messages)
        assert any(m.startswith("uploads: state=all-settled") for m in messages)
