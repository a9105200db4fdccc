"""Turn Orchestrator: the single entry point for one user message.

Architecture:
  A LangGraph ``StateGraph`` runs one turn strictly in sequence::

    input_guard → (tripwire?) ───────────────────────────────→ finalize
               → classify → scheduling | information | smalltalk
                          → output_guard → finalize → END

  * **input_guard**  screens the message; a tripwire short-circuits to the
                     fixed refusal and nothing downstream runs.
  * **classify**     labels the message (appointment / information / else).
  * **scheduling**   advances the per-user scheduling session.  A bare
                     yes/no while a proposal is pending is routed here
                     whatever the label, so the confirmation reaches the
                     machine that asked for it.
  * **output_guard** screens the drafted reply, whichever branch wrote it.
  * **finalize**     appends the reply to the conversation.

  Memory:
    Conversation history and the scheduling session are kept by the
    ``MemorySaver`` checkpointer with ``thread_id = user_id``.  The session
    is stored as plain JSON.  Turns from the same user are serialized.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Annotated, Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, RemoveMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from frontdesk.classifier import IntentClassifier
from frontdesk.config import KNOWLEDGE_API_KEY
from frontdesk.errors import GuardrailBlocked
from frontdesk.guardrails import GuardrailGate, LLMGuardrailClassifier
from frontdesk.information import InformationResponder
from frontdesk.knowledge import KnowledgeIndexer
from frontdesk.llm import (
    build_guardrail_llm,
    build_parser_llm,
    build_responder_llm,
    build_router_llm,
)
from frontdesk.models import Classification, ConversationTurn, Identity, ToolContext
from frontdesk.prompts import (
    EMPTY_INPUT,
    GENERIC_FAILURE,
    INPUT_REFUSAL,
    OUTPUT_REFUSAL,
    SMALLTALK_GREETING,
)
from frontdesk.scheduling import (
    SchedulingMachine,
    SchedulingSession,
    SchedulingState,
    SubIntentExtractor,
    is_affirmative,
    is_confirmation_reply,
    offered_slot,
)
from frontdesk.services.calendar_client import GoogleCalendarClient
from frontdesk.services.connections import ConnectionStore, GoogleTokenProvider
from frontdesk.services.identity import FirebaseIdentityVerifier, build_identity_verifier
from frontdesk.services.knowledge_client import KnowledgeClient
from frontdesk.slots import SlotParser
from frontdesk.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """State flowing through the turn graph.

    ``messages`` uses the ``add_messages`` reducer; the last message is
    always the current user message until ``finalize`` appends the reply.
    ``intent``, ``blocked`` and ``reply`` are per-turn plumbing and are
    reset on every invocation.  ``scheduling`` persists across turns.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    user_id: str
    tenant_id: str | None
    intent: str
    blocked: bool
    reply: str
    scheduling: dict[str, Any]


def _current_turn(state: TurnState) -> ConversationTurn:
    messages = state["messages"]
    return ConversationTurn(
        text=str(messages[-1].content),
        user_id=state["user_id"],
        history=tuple(messages[:-1]),
    )


def _load_session(state: TurnState) -> SchedulingSession:
    return SchedulingSession.model_validate(state.get("scheduling") or {})


class _UserLock:
    """One user's turn lock; lives only while a turn holds or awaits it."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> _UserLock:
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._lock.release()


class TurnOrchestrator:
    """Composes the gate, classifier and branches; one reply per message."""

    def __init__(
        self,
        gate: GuardrailGate,
        classifier: IntentClassifier,
        scheduler: SchedulingMachine,
        responder: InformationResponder,
        *,
        identity: FirebaseIdentityVerifier | None = None,
        checkpointer: MemorySaver | None = None,
    ):
        self._gate = gate
        self._classifier = classifier
        self._scheduler = scheduler
        self._responder = responder
        self._identity = identity
        self._graph = self._build_graph(checkpointer or MemorySaver())
        # Entries disappear once no turn for that user is running or waiting.
        self._user_locks: weakref.WeakValueDictionary[str, _UserLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ── Public API ───────────────────────────────────────────────────

    def handle_turn(self, user_id: str, text: str, *, tenant_id: str | None = None) -> str:
        """Process one message and return the reply text.

        Never raises: anything unexpected is logged with its traceback and
        replaced by a fixed generic message.
        """
        if not text or not text.strip():
            return EMPTY_INPUT

        with self._lock_for(user_id):
            try:
                result = self._graph.invoke(
                    {
                        "messages": [HumanMessage(content=text.strip())],
                        "user_id": user_id,
                        "tenant_id": tenant_id,
                        "intent": "",
                        "blocked": False,
                        "reply": "",
                    },
                    config={"configurable": {"thread_id": user_id}},
                )
            except Exception:
                logger.exception("Turn failed for user %s", user_id)
                return GENERIC_FAILURE
        return result["reply"]

    def authenticate(self, bearer_token: str) -> Identity | None:
        """Resolve a bearer token; ``None`` when no identity service is set up.

        Raises :class:`~frontdesk.errors.AuthenticationError` for a bad token.
        """
        if self._identity is None:
            return None
        return self._identity.verify(bearer_token)

    def scheduling_session(self, user_id: str) -> SchedulingSession:
        snapshot = self._graph.get_state({"configurable": {"thread_id": user_id}})
        return SchedulingSession.model_validate(snapshot.values.get("scheduling") or {})

    def history(self, user_id: str) -> list[AnyMessage]:
        snapshot = self._graph.get_state({"configurable": {"thread_id": user_id}})
        return list(snapshot.values.get("messages", []))

    def _lock_for(self, user_id: str) -> _UserLock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = _UserLock()
            return lock

    # ── Nodes ────────────────────────────────────────────────────────

    def _input_guard(self, state: TurnState) -> dict:
        current = state["messages"][-1]
        try:
            self._gate.enforce_input(str(current.content))
        except GuardrailBlocked:
            logger.info("Message refused for user %s", state["user_id"])
            return self._refuse(current)
        return {"blocked": False}

    @staticmethod
    def _refuse(current: AnyMessage) -> dict:
        # The blocked text is not kept in the conversation.
        return {
            "blocked": True,
            "reply": INPUT_REFUSAL,
            "messages": [RemoveMessage(id=current.id)],
        }

    def _classify(self, state: TurnState) -> dict:
        label = self._classifier.classify(_current_turn(state))
        logger.debug("User %s intent: %s", state["user_id"], label)
        return {"intent": label.value}

    def _scheduling(self, state: TurnState) -> dict:
        context = ToolContext(user_id=state["user_id"], tenant_id=state.get("tenant_id"))
        reply, session = self._scheduler.handle(
            context, _load_session(state), _current_turn(state),
        )
        logger.debug("User %s scheduling state: %s", state["user_id"], session.state)
        return {"reply": reply, "scheduling": session.model_dump(mode="json")}

    def _information(self, state: TurnState) -> dict:
        return {"reply": self._responder.answer(_current_turn(state))}

    @staticmethod
    def _smalltalk(state: TurnState) -> dict:
        return {"reply": SMALLTALK_GREETING}

    def _output_guard(self, state: TurnState) -> dict:
        try:
            self._gate.enforce_output(state["reply"])
        except GuardrailBlocked:
            logger.info("Reply withheld for user %s", state["user_id"])
            return {"blocked": True, "reply": OUTPUT_REFUSAL}
        return {"blocked": False}

    @staticmethod
    def _finalize(state: TurnState) -> dict:
        return {"messages": [AIMessage(content=state["reply"])]}

    # ── Conditional edges ────────────────────────────────────────────

    @staticmethod
    def _after_input(state: TurnState) -> str:
        return "finalize" if state.get("blocked") else "classify"

    @staticmethod
    def _route(state: TurnState) -> str:
        intent = state.get("intent")
        if intent == Classification.APPOINTMENT_RELATED:
            return "scheduling"
        session = _load_session(state)
        text = str(state["messages"][-1].content)
        if session.state == SchedulingState.AWAITING_CONFIRMATION and is_confirmation_reply(text):
            return "scheduling"
        if offered_slot(session) is not None and is_affirmative(text):
            return "scheduling"
        if intent == Classification.GET_INFORMATION:
            return "information"
        return "smalltalk"

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self, checkpointer: MemorySaver):
        graph = StateGraph(TurnState)

        graph.add_node("input_guard", self._input_guard)
        graph.add_node("classify", self._classify)
        graph.add_node("scheduling", self._scheduling)
        graph.add_node("information", self._information)
        graph.add_node("smalltalk", self._smalltalk)
        graph.add_node("output_guard", self._output_guard)
        graph.add_node("finalize", self._finalize)

        graph.set_entry_point("input_guard")
        graph.add_conditional_edges(
            "input_guard", self._after_input,
            {"classify": "classify", "finalize": "finalize"},
        )
        graph.add_conditional_edges(
            "classify", self._route,
            {"scheduling": "scheduling", "information": "information", "smalltalk": "smalltalk"},
        )
        for branch in ("scheduling", "information", "smalltalk"):
            graph.add_edge(branch, "output_guard")
        graph.add_edge("output_guard", "finalize")
        graph.add_edge("finalize", END)

        return graph.compile(checkpointer=checkpointer)


# ── Production wiring ────────────────────────────────────────────────


def create_turn_orchestrator(
    *,
    connections: ConnectionStore | None = None,
    indexer: KnowledgeIndexer | None = None,
) -> TurnOrchestrator:
    """Build the orchestrator with the real model and REST collaborators."""
    connections = connections or ConnectionStore()
    if indexer is None and KNOWLEDGE_API_KEY:
        indexer = KnowledgeIndexer(KnowledgeClient())

    parser_llm = build_parser_llm()
    executor = ToolExecutor(GoogleCalendarClient(GoogleTokenProvider(connections)))
    orchestrator = TurnOrchestrator(
        gate=GuardrailGate(LLMGuardrailClassifier(build_guardrail_llm())),
        classifier=IntentClassifier(build_router_llm()),
        scheduler=SchedulingMachine(
            executor, SlotParser(parser_llm), SubIntentExtractor(parser_llm),
        ),
        responder=InformationResponder(build_responder_llm(), indexer=indexer),
        identity=build_identity_verifier(),
    )
    logger.debug("Turn orchestrator ready (knowledge index: %s)", indexer is not None)
    return orchestrator
