"""Message processor: prompt, queue slot, inference, reply."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from contextkeeper.agent.queue import PriorityRequestQueue
from contextkeeper.bus.events import InboundMessage, OutboundMessage
from contextkeeper.config.schema import Config
from contextkeeper.errors import WiringError
from contextkeeper.providers.base import InferenceBackend, LLMResponse, StreamCallback
from contextkeeper.session.transport import ChatMessage

if TYPE_CHECKING:
    from contextkeeper.agent.orchestrator import PromptOrchestrator

DEFAULT_AGENT_ID = "agent"


class MessageProcessor:
    """Turns inbound conversation messages into agent replies.

    Also owns the notion of which senders are the agent itself, which the
    orchestrator needs to label history turns.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        queue: PriorityRequestQueue,
        config: Config | None = None,
    ):
        self.backend = backend
        self.queue = queue
        self.config = config or Config()
        senders = self.config.agent.agent_senders or [DEFAULT_AGENT_ID]
        self.agent_id = senders[0]
        self._agent_senders = set(senders)
        self.orchestrator: "PromptOrchestrator | None" = None
        self._context_blobs: dict[str, object] = {}
        self._inflight: dict[str, set[asyncio.Task]] = {}
        self._cancel_requested: set[asyncio.Task] = set()
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    def set_orchestrator(self, orchestrator: "PromptOrchestrator") -> None:
        self.orchestrator = orchestrator

    def is_agent_sender(self, sender_id: str) -> bool:
        return sender_id in self._agent_senders

    def add_agent_sender(self, sender_id: str) -> None:
        self._agent_senders.add(sender_id)

    async def process(
        self,
        msg: InboundMessage,
        model: str | None = None,
        on_stream: StreamCallback | None = None,
        on_thinking_stream: StreamCallback | None = None,
    ) -> OutboundMessage | None:
        """Answer one message. Returns None for agent messages or cancelled calls."""
        if self.orchestrator is None:
            raise WiringError("MessageProcessor used before wire(): no orchestrator")
        if self.is_agent_sender(msg.sender_id):
            return None

        cid = msg.conversation_id
        model = model or self.config.agent.model
        parts = await self.orchestrator.build_prompt(cid, msg.content, msg.sender_id, model)

        async def call() -> LLMResponse:
            return await self.backend.chat(
                parts.to_messages(),
                model=model,
                on_stream=on_stream,
                on_thinking_stream=on_thinking_stream,
                temperature=self.config.agent.temperature,
                max_tokens=self.config.agent.max_tokens,
                context_blob=None if parts.restart else self._context_blobs.get(cid),
            )

        task = asyncio.create_task(
            self.queue.run(model, cid, call, text=msg.content, sender_id=msg.sender_id)
        )
        self._inflight.setdefault(cid, set()).add(task)
        try:
            response = await task
        except asyncio.CancelledError:
            if task in self._cancel_requested:
                self._cancel_requested.discard(task)
                logger.info(f"Inference for {cid} cancelled")
                return None
            raise
        finally:
            tasks = self._inflight.get(cid, set())
            tasks.discard(task)
            if not tasks:
                self._inflight.pop(cid, None)

        if response.context_blob is not None:
            self._context_blobs[cid] = response.context_blob

        self.orchestrator.add_inbound_to_cache(
            cid, ChatMessage(msg.content, msg.sender_id, msg.timestamp),
        )
        if not response.failed and response.content:
            self.orchestrator.add_message_to_cache(
                cid, ChatMessage(response.content, self.agent_id, time.time()),
            )

        return OutboundMessage(
            conversation_id=cid,
            content=response.content or "",
            thinking=response.thinking,
            metadata={
                "prompt_tokens": parts.total_tokens,
                "tier": parts.tier.value,
                "restart": parts.restart,
                "error": response.failed,
            },
        )

    def cancel(self, conversation_id: str) -> bool:
        """Abort every in-flight or queued call of a conversation."""
        tasks = [t for t in self._inflight.get(conversation_id, ()) if not t.done()]
        for task in tasks:
            self._cancel_requested.add(task)
            task.cancel()
        return bool(tasks)

    def forget(self, conversation_id: str) -> None:
        """Drop the stored context blob, e.g. after a restart or deletion."""
        self._context_blobs.pop(conversation_id, None)

    async def run(
        self,
        inbound: "asyncio.Queue[InboundMessage]",
        publish: Callable[[OutboundMessage], Awaitable[None]],
    ) -> None:
        """Consume inbound messages until ``stop()``; conversations run concurrently."""
        self._running = True
        logger.info("Message processor started")
        while self._running:
            try:
                msg = await asyncio.wait_for(inbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(self._process_and_publish(msg, publish))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _process_and_publish(self, msg: InboundMessage, publish) -> None:
        try:
            response = await self.process(msg)
            if response:
                await publish(response)
        except Exception as e:
            logger.error(f"Error processing message in {msg.conversation_id}: {e}")
            await publish(OutboundMessage(
                conversation_id=msg.conversation_id,
                content=f"Sorry, I encountered an error: {str(e)}",
                metadata={"error": True},
            ))

    def stop(self) -> None:
        self._running = False
        logger.info("Message processor stopping")
