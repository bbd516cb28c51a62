"""
Session-scoped streaming chat pipeline.

A turn runs in two phases:

1. `ChatPipeline.start()` loads the session and checks access. Failures here
   happen before any provider call and before any fragment is produced.
2. `ChatTurn.stream()` sends the conversation to the completion provider,
   yields fragments as they arrive, and on success appends the user and
   assistant messages to the session in one step.

If the provider fails, the consumer stops early or the caller has
disconnected by the time the provider finishes, nothing is appended.
"""

from __future__ import annotations

import time
from contextlib import aclosing
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable

import structlog

from parley.auth.context import IdentityClaim
from parley.kernel.time import Clock, utc_now
from parley.llm.adapter import CompletionProvider
from parley.llm.errors import ProviderError
from parley.monitoring.metrics import Metrics, TurnOutcome, get_metrics
from parley.sessions.errors import SessionError, SessionErrorKind
from parley.sessions.models import Message, Session
from parley.sessions.service import SessionService

logger = structlog.get_logger()

DisconnectCheck = Callable[[], Awaitable[bool]]


class ChatTurn:
    """One prompt/response exchange on a loaded, access-checked session."""

    def __init__(
        self,
        pipeline: "ChatPipeline",
        session: Session,
        prompt: str,
        received_at: datetime,
    ) -> None:
        self.pipeline = pipeline
        self.session = session
        self.prompt = prompt
        self.received_at = received_at
        self.result: Session | None = None
        self._consumed = False

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def history(self) -> list[Message]:
        """Provider input preceding the new prompt, oldest first."""
        pipeline = self.pipeline
        prior = (
            self.session.messages.last(pipeline.history_limit)
            if pipeline.history_limit
            else tuple(self.session.messages)
        )
        history: list[Message] = []
        if pipeline.system_instruction:
            history.append(Message.system(pipeline.system_instruction, self.received_at))
        history.extend(prior)
        return history

    async def stream(self, is_disconnected: DisconnectCheck | None = None) -> AsyncIterator[str]:
        """Yield provider fragments, then save the turn.

        `is_disconnected` is asked once the provider is done; a caller that has
        gone away gets nothing saved.
        """
        if self._consumed:
            raise RuntimeError("A chat turn can only be streamed once")
        self._consumed = True

        pipeline = self.pipeline
        metrics = pipeline.metrics
        log = logger.bind(session_id=self.session_id, model=self.session.model)
        started = time.monotonic()
        parts: list[str] = []
        finished = False
        failed = False

        try:
            provider_stream = pipeline.provider.stream(self.history(), self.prompt, self.session.model)
            async with aclosing(provider_stream):
                async for fragment in provider_stream:
                    if not parts:
                        metrics.record_first_fragment(time.monotonic() - started)
                    parts.append(fragment)
                    yield fragment
            finished = True
        except ProviderError as e:
            failed = True
            log.warning("Chat turn failed at provider", code=e.code, error=e.message)
            metrics.record_provider_error(e.code)
            metrics.record_turn(TurnOutcome.PROVIDER_ERROR, time.monotonic() - started)
            raise
        except Exception as e:
            failed = True
            log.error("Chat turn failed unexpectedly", error=str(e), exc_info=True)
            metrics.record_turn(TurnOutcome.FAILED, time.monotonic() - started)
            raise
        finally:
            if not finished and not failed:
                log.info("Chat turn abandoned before completion", fragments=len(parts))
                metrics.record_turn(TurnOutcome.CANCELLED, time.monotonic() - started)

        if is_disconnected is not None and await is_disconnected():
            log.info("Chat turn not saved, caller disconnected", fragments=len(parts))
            metrics.record_turn(TurnOutcome.CANCELLED, time.monotonic() - started)
            return

        completed_at = max(pipeline.clock(), self.received_at)
        turn = (
            Message.user(self.prompt, self.received_at),
            Message.assistant("".join(parts), completed_at),
        )
        try:
            self.result = await pipeline.sessions.append_messages(self.session_id, turn)
        except Exception as e:
            log.error("Failed to persist chat turn", error=str(e), exc_info=True)
            metrics.record_turn(TurnOutcome.PERSISTENCE_ERROR, time.monotonic() - started)
            raise SessionError(SessionErrorKind.PERSISTENCE_FAILED, session_id=self.session_id) from e

        metrics.record_turn(TurnOutcome.COMPLETED, time.monotonic() - started)
        log.info("Chat turn completed", fragments=len(parts), message_count=len(self.result.messages))


class ChatPipeline:
    def __init__(
        self,
        sessions: SessionService,
        provider: CompletionProvider,
        *,
        system_instruction: str | None = None,
        history_limit: int | None = None,
        clock: Clock = utc_now,
        metrics: Metrics | None = None,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.system_instruction = system_instruction
        self.history_limit = history_limit
        self.clock = clock
        self.metrics = metrics or get_metrics()

    async def start(
        self,
        session_id: str,
        identity: IdentityClaim | None,
        prompt: str | None,
    ) -> ChatTurn:
        """Load and authorize the session for a new turn."""
        received_at = self.clock()
        session = await self.sessions.require_accessible(session_id, identity)
        return ChatTurn(self, session, prompt or "", received_at)

    async def handle(
        self,
        session_id: str,
        identity: IdentityClaim | None,
        prompt: str | None,
        is_disconnected: DisconnectCheck | None = None,
    ) -> AsyncIterator[str]:
        """Run a full turn, yielding response fragments as they arrive."""
        turn = await self.start(session_id, identity, prompt)
        async with aclosing(turn.stream(is_disconnected)) as fragments:
            async for fragment in fragments:
                yield fragment
