import unittest

import aiohttp

from prompter_live.chat.interfaces import ChatSourceError, NoActiveSourceError
from prompter_live.core.backoff import BackoffPolicy


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


class BackoffPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def test_persistent_failure_calls_exactly_max_attempts(self) -> None:
        recorder = _Recorder()
        calls = 0

        async def failing() -> None:
            nonlocal calls
            calls += 1
            raise ChatSourceError("boom")

        policy = BackoffPolicy(max_attempts=4, base_delay_seconds=0.5)
        with self.assertRaises(ChatSourceError):
            await policy.run("poll", failing, retry_on=(ChatSourceError,), sleep=recorder.sleep)

        self.assertEqual(calls, 4)
        self.assertEqual(recorder.delays, [0.5, 1.0, 2.0])

    async def test_success_after_transient_failures(self) -> None:
        recorder = _Recorder()
        outcomes: list[object] = [ChatSourceError("a"), ChatSourceError("b"), "ok"]

        async def flaky() -> str:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome  # type: ignore[return-value]

        policy = BackoffPolicy(max_attempts=3, base_delay_seconds=1.0)
        result = await policy.run("poll", flaky, retry_on=(ChatSourceError,), sleep=recorder.sleep)

        self.assertEqual(result, "ok")
        self.assertEqual(recorder.delays, [1.0, 2.0])

    async def test_non_retryable_errors_propagate_immediately(self) -> None:
        recorder = _Recorder()
        calls = 0

        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("bug")

        policy = BackoffPolicy(max_attempts=5, base_delay_seconds=1.0)
        with self.assertRaises(KeyError):
            await policy.run("poll", broken, retry_on=(ChatSourceError,), sleep=recorder.sleep)
        self.assertEqual(calls, 1)
        self.assertEqual(recorder.delays, [])

    async def test_truncated_response_is_retried_by_default(self) -> None:
        recorder = _Recorder()
        outcomes: list[object] = [aiohttp.ClientPayloadError("Response payload is not completed"), "ok"]

        async def flaky() -> str:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome  # type: ignore[return-value]

        policy = BackoffPolicy(max_attempts=2, base_delay_seconds=0.5)
        self.assertEqual(await policy.run("post_message", flaky, sleep=recorder.sleep), "ok")
        self.assertEqual(recorder.delays, [0.5])

    async def test_give_up_on_overrides_retryable_base_class(self) -> None:
        recorder = _Recorder()
        calls = 0

        async def not_live() -> None:
            nonlocal calls
            calls += 1
            raise NoActiveSourceError("not live")

        policy = BackoffPolicy(max_attempts=3, base_delay_seconds=1.0)
        with self.assertRaises(NoActiveSourceError):
            await policy.run(
                "poll",
                not_live,
                retry_on=(ChatSourceError,),
                give_up_on=(NoActiveSourceError,),
                sleep=recorder.sleep,
            )
        self.assertEqual(calls, 1)
        self.assertEqual(recorder.delays, [])

    def test_custom_growth_factor(self) -> None:
        policy = BackoffPolicy(max_attempts=3, base_delay_seconds=2.0, factor=3.0)
        self.assertEqual([policy.delay_for(k) for k in range(3)], [2.0, 6.0, 18.0])

    def test_rejects_zero_attempts(self) -> None:
        with self.assertRaises(ValueError):
            BackoffPolicy(max_attempts=0, base_delay_seconds=1.0)


if __name__ == "__main__":
    unittest.main()
