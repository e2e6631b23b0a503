"""Component construction and wiring.

Components are built in two phases. ``construct()`` creates every component
with its non-circular dependencies; ``wire()`` then injects the back-references
(the orchestrator's agent-sender classifier lives on the processor, which in
turn needs the orchestrator). Only a wired instance accepts requests.
"""

from dataclasses import dataclass

from loguru import logger

from contextkeeper.agent.budget import PromptParts
from contextkeeper.agent.orchestrator import PromptOrchestrator, RestartCheck
from contextkeeper.agent.processor import MessageProcessor
from contextkeeper.agent.proposals import (
    Proposal,
    ProposalEngine,
    ProposalService,
    SemanticIndex,
    SemanticProposalEngine,
)
from contextkeeper.agent.queue import PriorityRequestQueue
from contextkeeper.analysis.analyzer import ConversationAnalyzer
from contextkeeper.analysis.ledger import AnalysisLedger
from contextkeeper.analysis.store import ObjectStore
from contextkeeper.config.schema import Config
from contextkeeper.errors import WiringError
from contextkeeper.providers.base import InferenceBackend
from contextkeeper.session.transport import ChatMessage, ConversationTransport


@dataclass
class ContextKeeper:
    """All components of one running instance."""

    config: Config
    ledger: AnalysisLedger
    analyzer: ConversationAnalyzer
    proposals: ProposalService
    queue: PriorityRequestQueue
    orchestrator: PromptOrchestrator
    processor: MessageProcessor
    wired: bool = False

    def wire(self) -> "ContextKeeper":
        self.orchestrator.set_agent_classifier(self.processor.is_agent_sender)
        self.processor.set_orchestrator(self.orchestrator)
        self.wired = True
        logger.debug("Components wired")
        return self

    def _require_ready(self) -> None:
        if not self.wired:
            raise WiringError("ContextKeeper used before wire()")

    async def build_prompt(self, conversation_id: str, text: str, sender_id: str) -> PromptParts:
        self._require_ready()
        return await self.orchestrator.build_prompt(conversation_id, text, sender_id)

    async def check_and_prepare_restart(
        self, conversation_id: str, messages: list[ChatMessage],
    ) -> RestartCheck:
        self._require_ready()
        return await self.orchestrator.check_and_prepare_restart(conversation_id, messages)

    async def rank_proposals(self, conversation_id: str) -> list[Proposal]:
        self._require_ready()
        return await self.proposals.rank_proposals(conversation_id)

    def set_priority(self, conversation_id: str, priority: int) -> int:
        return self.queue.set_priority(conversation_id, priority)

    def get_priority(self, conversation_id: str) -> int:
        return self.queue.get_priority(conversation_id)

    def invalidate(self, conversation_id: str) -> None:
        self.orchestrator.invalidate(conversation_id)
        self.processor.forget(conversation_id)
        self.queue.invalidate(conversation_id)


def construct(
    store: ObjectStore,
    transport: ConversationTransport,
    backend: InferenceBackend,
    config: Config | None = None,
    semantic_index: SemanticIndex | None = None,
) -> ContextKeeper:
    """Phase one: build components without back-references."""
    config = config or Config()
    ledger = AnalysisLedger(store, cache_ttl=config.cache.ledger_ttl)
    analyzer = ConversationAnalyzer(backend, ledger, config.agent.model, config.analysis)

    if semantic_index is not None:
        engine: ProposalEngine = SemanticProposalEngine(ledger, semantic_index)
    else:
        engine = ProposalEngine(ledger)
    proposals = ProposalService(engine, config.proposals)

    queue = PriorityRequestQueue(
        default_priority=config.queue.default_priority,
        overrides=config.queue.concurrency,
        api_base=config.agent.api_base,
    )
    orchestrator = PromptOrchestrator(
        transport, ledger, config, analyzer=analyzer, proposals=proposals,
    )
    processor = MessageProcessor(backend, queue, config)
    return ContextKeeper(
        config=config,
        ledger=ledger,
        analyzer=analyzer,
        proposals=proposals,
        queue=queue,
        orchestrator=orchestrator,
        processor=processor,
    )


def build(
    store: ObjectStore,
    transport: ConversationTransport,
    backend: InferenceBackend,
    config: Config | None = None,
    semantic_index: SemanticIndex | None = None,
) -> ContextKeeper:
    """Construct and wire in one step."""
    return construct(store, transport, backend, config, semantic_index).wire()
