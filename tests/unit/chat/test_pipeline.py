from __future__ import annotations

import asyncio
from contextlib import aclosing
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from parley.auth.context import IdentityClaim
from parley.chat.pipeline import ChatPipeline
from parley.llm.errors import ProviderError, ProviderErrorKind
from parley.monitoring.metrics import TurnOutcome
from parley.sessions.errors import SessionError, SessionErrorKind
from parley.sessions.models import Message, MessageRole
from tests.support.providers import FakeCompletionProvider

pytestmark = pytest.mark.unit

ALICE = IdentityClaim(subject="alice", roles=frozenset({"USER"}))
BOB = IdentityClaim(subject="bob", roles=frozenset({"USER"}))


@pytest.fixture
def pipeline(session_service, fake_provider, fake_clock) -> ChatPipeline:
    return ChatPipeline(session_service, fake_provider, clock=fake_clock.now)


@pytest_asyncio.fixture
async def session(session_service):
    return await session_service.create(owner="alice", name="Trip", model="gpt-test")


async def _run(pipeline: ChatPipeline, session_id: str, prompt: str | None, identity=ALICE) -> list[str]:
    return [fragment async for fragment in pipeline.handle(session_id, identity, prompt)]


async def _consume(fragments) -> None:
    async for _ in fragments:
        pass


@pytest.mark.asyncio
async def test_successful_turn_streams_and_appends_pair(pipeline, session, session_service, fake_provider):
    fragments = await _run(pipeline, session.session_id, "Hello")

    assert fragments == ["Hel", "lo!"]
    stored = await session_service.get_by_id(session.session_id)
    assert [(m.role, m.content) for m in stored.messages] == [
        (MessageRole.USER, "Hello"),
        (MessageRole.ASSISTANT, "Hello!"),
    ]
    user, assistant = stored.messages
    assert assistant.timestamp >= user.timestamp
    assert fake_provider.calls[0]["model"] == "gpt-test"
    assert fake_provider.calls[0]["prompt"] == "Hello"


@pytest.mark.asyncio
async def test_prior_messages_are_sent_oldest_first(pipeline, session, fake_provider):
    await _run(pipeline, session.session_id, "first")
    await _run(pipeline, session.session_id, "second")

    history = fake_provider.calls[1]["history"]
    assert [(m.role, m.content) for m in history] == [
        (MessageRole.USER, "first"),
        (MessageRole.ASSISTANT, "Hello!"),
    ]


@pytest.mark.asyncio
async def test_system_instruction_is_sent_but_not_saved(session_service, fake_provider, fake_clock, session):
    pipeline = ChatPipeline(
        session_service,
        fake_provider,
        system_instruction="Be brief.",
        clock=fake_clock.now,
    )
    await _run(pipeline, session.session_id, "Hello")

    history = fake_provider.calls[0]["history"]
    assert history[0].role is MessageRole.SYSTEM
    assert history[0].content == "Be brief."
    stored = await session_service.get_by_id(session.session_id)
    assert MessageRole.SYSTEM not in {m.role for m in stored.messages}


@pytest.mark.asyncio
async def test_history_limit_keeps_most_recent(session_service, fake_provider, fake_clock, session):
    pipeline = ChatPipeline(session_service, fake_provider, history_limit=2, clock=fake_clock.now)
    for prompt in ("one", "two", "three"):
        await _run(pipeline, session.session_id, prompt)

    assert [m.content for m in fake_provider.calls[-1]["history"]] == ["two", "Hello!"]


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", [None, ""])
async def test_empty_prompt_is_a_zero_length_turn(pipeline, session, session_service, fake_provider, prompt):
    await _run(pipeline, session.session_id, prompt)

    assert fake_provider.calls[0]["prompt"] == ""
    stored = await session_service.get_by_id(session.session_id)
    assert stored.messages[0].role is MessageRole.USER
    assert stored.messages[0].content == ""


@pytest.mark.asyncio
async def test_unknown_session_fails_before_provider_call(pipeline, fake_provider):
    with pytest.raises(SessionError) as exc_info:
        await _run(pipeline, "deadbeef", "hi")
    assert exc_info.value.kind is SessionErrorKind.NOT_FOUND
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_foreign_session_is_denied_before_provider_call(pipeline, session, fake_provider):
    for identity in (BOB, None):
        with pytest.raises(SessionError) as exc_info:
            await _run(pipeline, session.session_id, "hi", identity=identity)
        assert exc_info.value.kind is SessionErrorKind.ACCESS_DENIED
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_provider_failure_leaves_session_unchanged(pipeline, session, session_service, fake_provider):
    fake_provider.error = ProviderError(ProviderErrorKind.UNAVAILABLE, "down")
    fake_provider.fail_after = 1

    received: list[str] = []
    with pytest.raises(ProviderError):
        async for fragment in pipeline.handle(session.session_id, ALICE, "Hello"):
            received.append(fragment)

    assert received == ["Hel"]
    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 0


@pytest.mark.asyncio
async def test_consumer_stopping_early_appends_nothing(pipeline, session, session_service, fake_provider):
    async with aclosing(pipeline.handle(session.session_id, ALICE, "Hello")) as fragments:
        async for fragment in fragments:
            assert fragment == "Hel"
            break

    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 0
    assert fake_provider.streams_closed == 1


@pytest.mark.asyncio
async def test_cancelled_turn_appends_nothing(session_service, fake_clock, session):
    gate = asyncio.Event()

    class SlowProvider(FakeCompletionProvider):
        async def _stream(self):
            yield "Hel"
            await gate.wait()
            yield "lo!"

    pipeline = ChatPipeline(session_service, SlowProvider(), clock=fake_clock.now)
    first_seen = asyncio.Event()

    async def consume():
        async for _ in pipeline.handle(session.session_id, ALICE, "Hello"):
            first_seen.set()

    task = asyncio.create_task(consume())
    await first_seen.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 0


@pytest.mark.asyncio
async def test_persistence_failure_is_a_trailing_error(session_service, fake_provider, fake_clock, session, monkeypatch):
    pipeline = ChatPipeline(session_service, fake_provider, clock=fake_clock.now)

    async def broken_append(session_id, messages):
        raise ConnectionError("store down")

    monkeypatch.setattr(session_service.store, "append", broken_append)

    received: list[str] = []
    with pytest.raises(SessionError) as exc_info:
        async for fragment in pipeline.handle(session.session_id, ALICE, "Hello"):
            received.append(fragment)

    assert received == ["Hel", "lo!"]
    assert exc_info.value.kind is SessionErrorKind.PERSISTENCE_FAILED


@pytest.mark.asyncio
async def test_session_deleted_mid_turn_reports_persistence_failure(pipeline, session, session_service):
    turn = await pipeline.start(session.session_id, ALICE, "Hello")
    await session_service.delete(session.session_id)

    with pytest.raises(SessionError) as exc_info:
        async for _ in turn.stream():
            pass
    assert exc_info.value.kind is SessionErrorKind.PERSISTENCE_FAILED


@pytest.mark.asyncio
async def test_turn_cannot_be_streamed_twice(pipeline, session):
    turn = await pipeline.start(session.session_id, ALICE, "Hello")
    async for _ in turn.stream():
        pass
    assert turn.result is not None and len(turn.result.messages) == 2

    with pytest.raises(RuntimeError):
        async for _ in turn.stream():
            pass


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_session_keep_pairs(pipeline, session, session_service):
    await asyncio.gather(*(_run(pipeline, session.session_id, f"p{i}") for i in range(10)))

    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 20
    for user, assistant in zip(stored.messages[::2], stored.messages[1::2]):
        assert user.role is MessageRole.USER
        assert assistant.role is MessageRole.ASSISTANT
        assert isinstance(user, Message)


@pytest.mark.asyncio
async def test_turn_is_not_saved_once_caller_has_disconnected(session_service, fake_provider, fake_clock, session):
    metrics = MagicMock()
    pipeline = ChatPipeline(session_service, fake_provider, clock=fake_clock.now, metrics=metrics)

    async def gone() -> bool:
        return True

    fragments = [f async for f in pipeline.handle(session.session_id, ALICE, "Hello", is_disconnected=gone)]

    assert fragments == ["Hel", "lo!"]
    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 0
    metrics.record_turn.assert_called_once()
    assert metrics.record_turn.call_args.args[0] is TurnOutcome.CANCELLED


@pytest.mark.asyncio
async def test_connected_caller_still_gets_turn_saved(pipeline, session, session_service):
    async def still_here() -> bool:
        return False

    await _consume(pipeline.handle(session.session_id, ALICE, "Hello", is_disconnected=still_here))

    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 2


@pytest.mark.asyncio
async def test_unexpected_provider_crash_is_recorded_as_failure(session_service, fake_clock, session):
    class CrashingProvider(FakeCompletionProvider):
        async def _stream(self):
            yield "Hel"
            raise RuntimeError("decoder blew up")

    metrics = MagicMock()
    pipeline = ChatPipeline(session_service, CrashingProvider(), clock=fake_clock.now, metrics=metrics)

    with pytest.raises(RuntimeError):
        await _consume(pipeline.handle(session.session_id, ALICE, "Hello"))

    stored = await session_service.get_by_id(session.session_id)
    assert len(stored.messages) == 0
    outcomes = [c.args[0] for c in metrics.record_turn.call_args_list]
    assert outcomes == [TurnOutcome.FAILED]
