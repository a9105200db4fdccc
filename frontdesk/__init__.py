"""Frontdesk: a business assistant for scheduling and questions.

Architecture Overview
=====================

Every message goes through one sequential pipeline, built as a **LangGraph**
``StateGraph`` in :mod:`frontdesk.orchestrator`:

1. **input guard**  — :mod:`frontdesk.guardrails` screens the text; a
   tripwire ends the turn with a fixed refusal.
2. **classify**     — :mod:`frontdesk.classifier` picks exactly one of
   ``appointment_related``, ``get_information`` or ``else``.
3. **branch**       — :mod:`frontdesk.scheduling` (confirmation-gated calendar
   actions), :mod:`frontdesk.information` (answers from known material
   only) or a fixed greeting.
4. **output guard** — the drafted reply is screened the same way.

Key Design Decisions
--------------------
- **Confirmation gate**: book/reschedule/cancel run only when the user's
  message is a bare "yes" directly after the assistant restated that exact
  action.
- **Tool Execution Contract**: calendar operations are a pydantic
  discriminated union (:mod:`frontdesk.tools.contract`) executed as a pure
  function of ``(ToolContext, request)`` (:mod:`frontdesk.tools.executor`)
  with typed error kinds.
- **Canonical timezone**: every time is normalized to PT
  (:mod:`frontdesk.timeutil`).
- **Injection**: collaborators (models, calendar, knowledge index, identity)
  are passed into constructors; :func:`frontdesk.orchestrator.create_turn_orchestrator`
  does the production wiring.
- **Memory**: LangGraph's MemorySaver keeps per-user history and scheduling
  state (thread id = user id).

Package Structure
-----------------
- ``frontdesk/orchestrator.py`` — turn graph
- ``frontdesk/scheduling.py``   — scheduling state machine
- ``frontdesk/knowledge.py``    — per-user knowledge index and refresh
- ``frontdesk/config.py``       — configuration from env / SSM
- ``frontdesk/server.py``       — FastAPI application
- ``frontdesk/main.py``         — CLI chat interface
- ``frontdesk/services/``       — REST clients, token store, cache, metrics
- ``frontdesk/tools/``          — tool contract and executor
- ``frontdesk/api/``            — FastAPI routes and schemas
"""
