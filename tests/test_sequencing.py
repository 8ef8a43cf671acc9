"""Tests for generator-driven sequencing, derived outcomes and actions."""

import asyncio

from unwrapped import (
    DEFECT_CODE,
    AsyncOutcome,
    Failure,
    Idle,
    LazyAction,
    Outcome,
    Success,
)


def fetch_user(user_id: int) -> AsyncOutcome:
    async def load() -> dict:
        await asyncio.sleep(0)
        return {"id": user_id, "name": f"user-{user_id}"}

    return AsyncOutcome.from_value_awaitable(load())


def fetch_posts(user: dict) -> AsyncOutcome:
    async def load() -> list:
        await asyncio.sleep(0)
        return [f"post by {user['name']}"]

    return AsyncOutcome.from_value_awaitable(load())


def echo(value, notify_progress):
    result = yield Outcome.ok(value)
    return result


def plus_hundred(value, notify_progress):
    result = yield Outcome.ok(value + 100)
    return result


class TestRun:
    """Tests for AsyncOutcome.run()."""

    async def test_sequences_steps(self) -> None:
        def load_profile(notify_progress):
            user = yield fetch_user(1)
            posts = yield fetch_posts(user)
            return {"user": user["name"], "posts": posts}

        profile = AsyncOutcome.run(load_profile)
        assert profile.is_loading()
        assert await profile == Outcome.ok({"user": "user-1", "posts": ["post by user-1"]})

    async def test_yield_from(self) -> None:
        def load_profile(notify_progress):
            user = yield from fetch_user(2)
            total = yield from Outcome.ok(40)
            return total + user["id"]

        assert await AsyncOutcome.run(load_profile) == Outcome.ok(42)

    async def test_first_error_aborts_with_cleanup(self) -> None:
        reached = []
        cleaned = []

        def steps(notify_progress):
            try:
                yield fetch_user(1)
                yield AsyncOutcome.err("no posts")
                reached.append(True)
                yield fetch_user(2)
            finally:
                cleaned.append(True)
            return "unreachable"

        result = await AsyncOutcome.run(steps)
        assert result == Outcome.err("no posts")
        assert reached == []
        assert cleaned == [True]

    async def test_exception_in_generator_is_defect(self, reported_errors: list) -> None:
        def steps(notify_progress):
            yield Outcome.ok(1)
            raise LookupError("bad index")

        result = await AsyncOutcome.run(steps)
        error = result.unwrap_error_or_none()
        assert error.code == DEFECT_CODE
        assert isinstance(error.cause, LookupError)

    async def test_invalid_step_is_defect(self, reported_errors: list) -> None:
        def steps(notify_progress):
            yield "not a step"

        result = await AsyncOutcome.run(steps)
        assert isinstance(result.unwrap_error_or_none().cause, TypeError)

    async def test_generator_without_steps(self) -> None:
        def steps(notify_progress):
            return "immediate"
            yield  # pragma: no cover

        assert await AsyncOutcome.run(steps) == Outcome.ok("immediate")

    async def test_notify_progress_updates_loading_state(self) -> None:
        progress = []

        def steps(notify_progress):
            notify_progress({"users": "done"})
            yield fetch_user(1)
            notify_progress({"posts": "done"})
            yield fetch_user(2)
            return True

        outcome = AsyncOutcome.run(steps)
        outcome.listen(
            lambda o, old: progress.append(getattr(o.state, "progress", None)),
            immediate=False,
            notify_on_progress=True,
        )
        await outcome.wait_for_settled()
        assert progress == [{"users": "done"}, {"users": "done", "posts": "done"}, None]

    async def test_run_in_place_retriggers(self) -> None:
        runs = 0

        def steps(notify_progress):
            nonlocal runs
            runs += 1
            value = yield Outcome.ok(runs)
            return value

        outcome = AsyncOutcome.run(steps)
        assert await outcome == Outcome.ok(1)

        outcome.run_in_place(steps)
        assert outcome.is_loading()
        assert await outcome == Outcome.ok(2)


class TestDerived:
    """Tests for derived_from_parent() and derive()."""

    def test_idle_parent_keeps_derived_idle(self) -> None:
        parent = AsyncOutcome()
        derived = parent.derive(echo)
        assert derived.state == Idle()
        assert derived.parent is parent

    async def test_success_runs_generator(self) -> None:
        def posts_for(user, notify_progress):
            posts = yield fetch_posts(user)
            return len(posts)

        parent = AsyncOutcome.ok({"id": 1, "name": "ada"})
        derived = AsyncOutcome.derived_from_parent(parent, posts_for)
        assert await derived == Outcome.ok(1)

    async def test_error_is_copied_verbatim(self) -> None:
        calls = []

        def never(value, notify_progress):
            calls.append(value)
            yield Outcome.ok(value)

        parent = AsyncOutcome.ok(1)
        derived = parent.derive(never)
        await derived.wait_for_settled()

        parent.update_from_error("parent failed")
        assert derived.state == Failure("parent failed")
        assert calls == [1]

    async def test_parent_loading_is_copied(self) -> None:
        def double(value, notify_progress):
            doubled = yield Outcome.ok(value * 2)
            return doubled

        parent = fetch_user(3)
        derived = parent.derive(lambda user, notify_progress: double(user["id"], notify_progress))
        assert derived.is_loading()
        assert await derived == Outcome.ok(6)

    async def test_reruns_on_every_parent_success(self) -> None:
        parent = AsyncOutcome.ok(1)
        derived = parent.derive(plus_hundred)
        assert await derived == Outcome.ok(101)

        parent.update_from_value(2)
        assert derived.is_loading()
        assert await derived == Outcome.ok(102)

    async def test_detach_stops_following_parent(self) -> None:
        parent = AsyncOutcome.ok(1)
        derived = parent.derive(echo)
        await derived.wait_for_settled()
        derived.detach()

        parent.update_from_error("ignored")
        assert derived.state == Success(1)


class TestActions:
    """Tests for from_action() and make_lazy_action()."""

    async def test_from_action_receives_progress_callback(self) -> None:
        async def upload(notify_progress) -> Outcome:
            notify_progress(0.5)
            await asyncio.sleep(0)
            return Outcome.ok("uploaded")

        outcome = AsyncOutcome.from_action(upload)
        assert outcome.is_loading()
        assert await outcome == Outcome.ok("uploaded")

    async def test_lazy_action_waits_for_trigger(self) -> None:
        calls = 0

        async def save(notify_progress) -> Outcome:
            nonlocal calls
            calls += 1
            return Outcome.ok(calls)

        lazy = AsyncOutcome.make_lazy_action(save)
        assert isinstance(lazy, LazyAction)
        assert lazy.result.is_idle()
        assert calls == 0

        assert lazy.trigger() is lazy.result
        assert await lazy.result == Outcome.ok(1)

        lazy.trigger()
        assert await lazy.result == Outcome.ok(2)

    async def test_failing_action_is_defect(self, reported_errors: list) -> None:
        async def broken(notify_progress) -> Outcome:
            raise PermissionError("read-only")

        result = await AsyncOutcome.from_action(broken)
        assert result.unwrap_error_or_none().code == DEFECT_CODE
        assert len(reported_errors) == 1
