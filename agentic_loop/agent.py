import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Mapping, Optional, Sequence, TypeVar

from pydantic import ValidationError

from agentic_loop.events import (
    ConfirmationRequiredEvent,
    ContentDeltaEvent,
    ContentDiscardedEvent,
    Event,
    EventCallback,
    EventChannel,
    EventEmitter,
    IterationCompleteEvent,
    IterationStartEvent,
    KnowledgeRetrievedEvent,
    ProcessingEndEvent,
    ProcessingStartEvent,
)
from agentic_loop.exceptions import (
    InvalidToolArguments,
    IterationLimitExceeded,
    LoopError,
    ProviderFailure,
    UnknownTool,
)
from agentic_loop.execution import (
    LoopConfig,
    LoopResult,
    LoopState,
    LoopStatus,
    Message,
    PendingConfirmation,
    ToolCall,
    ToolCallRecord,
)
from agentic_loop.executor import ToolExecutor
from agentic_loop.intent import Answer, Intent, Malformed, classify
from agentic_loop.knowledge import KnowledgeRetriever, format_knowledge
from agentic_loop.model import ModelAdaptor
from agentic_loop.planning import build_plan
from agentic_loop.response import build_result, format_tool_result
from agentic_loop.tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DENIED_BY_CALLER = "denied by caller"
CANCELLED_BEFORE_EXECUTION = "cancelled before execution"
CORRECTIVE_NOTE = (
    "Your previous reply could not be processed. Reply either with plain text "
    "or with tool calls whose arguments are a JSON object."
)


class Agent:
    """Drives the model/tool loop for one conversation turn at a time.

    The agent holds no per-run state: every call to run_async receives the
    history, works on its own copy, and returns the new turns in its result.

    Args:
        model: Adaptor used for every model call.
        tools: Tools to register in a fresh registry.
        registry: An existing registry. `tools`, if also given, are added to it.
        config: Default policy for runs that don't pass their own.
        retriever: Optional knowledge retriever consulted once per run.
        executor: Tool executor; a default one is created when omitted.
        name: Name used in logs.
        events: Agent-level event handlers shared by every run.
    """

    def __init__(
        self,
        model: ModelAdaptor,
        tools: Optional[list[Tool]] = None,
        registry: Optional[ToolRegistry] = None,
        config: Optional[LoopConfig] = None,
        retriever: Optional[KnowledgeRetriever] = None,
        executor: Optional[ToolExecutor] = None,
        name: str = "Agent",
        events: Optional[EventEmitter] = None,
    ):
        self.model = model
        self.registry = registry if registry is not None else ToolRegistry()
        for tool in tools or []:
            self.registry.register(tool)
        self.config = config or LoopConfig()
        self.retriever = retriever
        self.executor = executor or ToolExecutor(default_timeout=self.config.tool_timeout)
        self.name = name
        self.events = events or EventEmitter()

    def on(self, event_type: str):
        """Decorator for registering an event handler directly on the agent.

        Usage:
            agent = Agent(model=model, tools=tools)

            @agent.on('tool:complete')
            def log_tool(event):
                print(f"Tool: {event.tool_name}")
        """
        return self.events.on(event_type)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run(
        self,
        message: str,
        history: Optional[Sequence[Message]] = None,
        config: Optional[LoopConfig] = None,
        on_event: Optional[EventCallback] = None,
    ) -> LoopResult:
        """Run agent synchronously."""
        return asyncio.run(self.run_async(message, history, config, on_event))

    async def run_async(
        self,
        message: str,
        history: Optional[Sequence[Message]] = None,
        config: Optional[LoopConfig] = None,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LoopResult:
        """Run the loop for one user message.

        Returns a LoopResult whose status is completed, cancelled or
        awaiting_confirmation.

        Raises:
            LoopError: IterationLimitExceeded, ProviderFailure, UnknownTool,
                InvalidToolArguments or InvalidPlan.
        """
        config = config or self.config
        emitter = self.events.bind(on_event)
        emitter.emit(ProcessingStartEvent(message=message))
        logger.info("Agent '%s' starting run (max_iterations=%d)", self.name, config.max_iterations)

        state = LoopState(config=config)
        for previous in history or []:
            # The system prompt comes from config, never from stored history
            if previous.role != "system":
                state.append(previous)
        state.base_length = len(state.history)
        state.system_prompt = await self._build_system_prompt(config, message, emitter)
        state.append(Message(role="user", content=message))

        return await self._drive(state, emitter, cancel_event)

    def resume(
        self,
        result: LoopResult,
        decisions: Mapping[str, bool],
        on_event: Optional[EventCallback] = None,
    ) -> LoopResult:
        """Resume a suspended run synchronously."""
        return asyncio.run(self.resume_async(result, decisions, on_event))

    async def resume_async(
        self,
        result: LoopResult,
        decisions: Mapping[str, bool],
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LoopResult:
        """Continue a run suspended at the confirmation gate.

        Args:
            result: The awaiting_confirmation result returned by run_async.
            decisions: True (approve) or False (deny) for every id in
                `result.pending.call_ids`. Other calls of the turn are approved.

        Raises:
            ValueError: If the result isn't suspended or was already resumed,
                or the decisions don't map exactly the pending call ids to bools.
        """
        pending = result.pending
        if result.status != LoopStatus.AWAITING_CONFIRMATION or pending is None:
            raise ValueError("Result is not awaiting confirmation")
        state = pending.state
        if state.status != LoopStatus.AWAITING_CONFIRMATION:
            raise ValueError("This confirmation has already been resumed")

        expected = set(pending.call_ids)
        unknown = set(decisions) - expected
        missing = expected - set(decisions)
        if unknown:
            raise ValueError(f"Decisions for unknown tool calls: {sorted(unknown)}")
        if missing:
            raise ValueError(f"Missing decisions for tool calls: {sorted(missing)}")
        not_bool = sorted(call_id for call_id, approved in decisions.items() if not isinstance(approved, bool))
        if not_bool:
            raise ValueError(f"Decisions must be True or False, got non-bool for: {not_bool}")

        # Calls that weren't gated run as approved
        merged = {request.id: True for request in pending.requests}
        merged.update(decisions)

        emitter = self.events.bind(on_event)
        emitter.emit(ProcessingStartEvent(message="", resumed=True))
        state.status = LoopStatus.RUNNING
        logger.info(
            "Agent '%s' resuming run: %d approved, %d denied",
            self.name,
            sum(1 for approved in merged.values() if approved),
            sum(1 for approved in merged.values() if not approved),
        )
        return await self._drive(state, emitter, cancel_event, (pending.requests, merged))

    async def stream(
        self,
        message: str,
        history: Optional[Sequence[Message]] = None,
        config: Optional[LoopConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Event]:
        """Run the loop and yield its events in order.

        The last event is processing:end, carrying the result. A fatal
        LoopError is raised after that event has been yielded.
        """
        channel = EventChannel()

        async def runner() -> LoopResult:
            try:
                return await self.run_async(message, history, config, channel.put, cancel_event)
            finally:
                channel.close()

        task = asyncio.ensure_future(runner())
        try:
            async for event in channel:
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _drive(
        self,
        state: LoopState,
        emitter: EventEmitter,
        cancel_event: Optional[asyncio.Event],
        resume: Optional[tuple[list[ToolCall], dict[str, bool]]] = None,
    ) -> LoopResult:
        try:
            result = await self._loop(state, emitter, cancel_event, resume)
        except LoopError as e:
            state.status = LoopStatus.FAILED
            state.error = str(e)
            state.end_time = time.time()
            e.iteration = state.iteration
            e.history = list(state.history)
            e.tool_calls = list(state.tool_calls)
            logger.error("Agent '%s' failed (%s): %s", self.name, e.kind.value, e)
            emitter.emit(ProcessingEndEvent(status=LoopStatus.FAILED.value, error=e))
            raise

        logger.info(
            "Agent '%s' finished with status %s after %d iteration(s)",
            self.name,
            result.status.value,
            result.iterations,
        )
        emitter.emit(ProcessingEndEvent(status=result.status.value, result=result))
        return result

    async def _loop(
        self,
        state: LoopState,
        emitter: EventEmitter,
        cancel_event: Optional[asyncio.Event],
        resume: Optional[tuple[list[ToolCall], dict[str, bool]]],
    ) -> LoopResult:
        config = state.config

        if resume is not None:
            requests, decisions = resume
            cancelled = await self._finish_tool_iteration(
                state, requests, decisions, emitter, cancel_event, time.time()
            )
            if cancelled:
                return self._finish(state, LoopStatus.CANCELLED)

        while True:
            if _is_set(cancel_event):
                return self._finish(state, LoopStatus.CANCELLED)

            iteration_start = time.time()
            emitter.emit(
                IterationStartEvent(iteration=state.iteration + 1, max_iterations=config.max_iterations)
            )
            logger.debug("Iteration %d/%d", state.iteration + 1, config.max_iterations)

            intent = await self._call_model(state, emitter, cancel_event)
            if intent is None:
                return self._finish(state, LoopStatus.CANCELLED)

            if isinstance(intent, Answer):
                state.append(Message(role="assistant", content=intent.text))
                state.advance()
                emitter.emit(
                    IterationCompleteEvent(
                        iteration=state.iteration,
                        duration_ms=(time.time() - iteration_start) * 1000,
                        tool_call_count=0,
                    )
                )
                return self._finish(state, LoopStatus.COMPLETED)

            # Stray prose stays out of the model context but is kept on the message
            state.append(
                Message(
                    role="assistant",
                    content="",
                    tool_calls=tuple(intent.requests),
                    metadata={"text": intent.text} if intent.text else {},
                )
            )

            gated = self._gated_requests(config, intent.requests)
            if gated:
                state.status = LoopStatus.AWAITING_CONFIRMATION
                pending = PendingConfirmation(
                    list(intent.requests),
                    state,
                    gated_ids=[request.id for request in gated],
                )
                emitter.emit(
                    ConfirmationRequiredEvent(
                        requests=list(intent.requests),
                        call_ids=pending.call_ids,
                        risk_levels={request.id: self._risk_level(request) for request in intent.requests},
                    )
                )
                logger.info(
                    "Agent '%s' awaiting confirmation for %d tool call(s)",
                    self.name,
                    len(pending.call_ids),
                )
                return build_result(state, pending=pending)

            cancelled = await self._finish_tool_iteration(
                state, intent.requests, None, emitter, cancel_event, iteration_start
            )
            if cancelled:
                return self._finish(state, LoopStatus.CANCELLED)

    async def _finish_tool_iteration(
        self,
        state: LoopState,
        requests: list[ToolCall],
        decisions: Optional[dict[str, bool]],
        emitter: EventEmitter,
        cancel_event: Optional[asyncio.Event],
        iteration_start: float,
    ) -> bool:
        """Run the requested tools and close the iteration.

        Returns True when the run was cancelled while tools were running.
        """
        records = await self._dispatch(state, requests, decisions, emitter, cancel_event)
        state.advance()
        emitter.emit(
            IterationCompleteEvent(
                iteration=state.iteration,
                duration_ms=(time.time() - iteration_start) * 1000,
                tool_call_count=len(records),
            )
        )
        if _is_set(cancel_event):
            return True
        if state.iteration >= state.config.max_iterations:
            raise IterationLimitExceeded(
                f"Reached maximum iteration limit ({state.config.max_iterations})"
            )
        return False

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    async def _call_model(
        self,
        state: LoopState,
        emitter: EventEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[Intent]:
        """Get one usable turn from the model.

        A malformed turn is retried once with a corrective note appended to
        the system prompt. Returns None if the run was cancelled meanwhile.
        """
        tools = list(self.registry)
        iteration = state.iteration + 1

        for attempt in (1, 2):
            system_prompt = state.system_prompt
            if attempt > 1:
                system_prompt = f"{system_prompt}\n\n{CORRECTIVE_NOTE}" if system_prompt else CORRECTIVE_NOTE

            streamed: list[str] = []

            def on_delta(delta: str, attempt: int = attempt) -> None:
                streamed.append(delta)
                emitter.emit(ContentDeltaEvent(delta=delta, iteration=iteration, attempt=attempt))

            async def generate():
                return await asyncio.wait_for(
                    self.model.generate(
                        messages=list(state.history),
                        tools=tools,
                        system_prompt=system_prompt,
                        on_delta=on_delta,
                    ),
                    timeout=state.config.model_timeout,
                )

            try:
                response, cancelled = await _until_cancelled(generate(), cancel_event)
            except LoopError:
                raise
            except asyncio.TimeoutError as e:
                raise ProviderFailure(
                    f"Model call timed out after {state.config.model_timeout}s"
                ) from e
            except Exception as e:
                raise ProviderFailure(f"Model call failed: {e}") from e

            if cancelled:
                return None

            state.usage.add(response.usage)
            intent = classify(response)
            if not isinstance(intent, Malformed):
                if not streamed and response.content:
                    emitter.emit(ContentDeltaEvent(delta=response.content, iteration=iteration, attempt=attempt))
                return intent

            logger.warning("Malformed model turn (attempt %d): %s", attempt, intent.reason)
            emitter.emit(ContentDiscardedEvent(iteration=iteration, attempt=attempt, reason=intent.reason))

        raise ProviderFailure(f"Model returned unusable output twice: {intent.reason}")

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        state: LoopState,
        requests: list[ToolCall],
        decisions: Optional[dict[str, bool]],
        emitter: EventEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> list[ToolCallRecord]:
        """Execute approved requests stage by stage and record every outcome.

        Denied requests are recorded first, in request order; executed ones
        follow in plan order, whatever order they actually finish in.
        """
        records: list[ToolCallRecord] = []
        approved: list[ToolCall] = []
        for request in requests:
            if decisions is not None and not decisions[request.id]:
                record = ToolCallRecord(id=request.id, tool_name=request.tool_name, arguments=dict(request.arguments))
                record.fail(DENIED_BY_CALLER)
                logger.info("Tool call '%s' (%s) denied by caller", request.tool_name, request.id)
                records.append(record)
            else:
                approved.append(request)

        resolved: dict[str, tuple[Tool, dict]] = {}
        for request in approved:
            tool = self.registry.get(request.tool_name)
            if tool is None:
                raise UnknownTool(f"Tool '{request.tool_name}' not found")
            try:
                validated = tool.input_model.model_validate(request.arguments)
            except ValidationError as e:
                raise InvalidToolArguments(
                    f"Invalid arguments for tool '{request.tool_name}': {e}"
                ) from e
            resolved[request.id] = (tool, validated.model_dump())

        for stage in build_plan(approved, self.registry, parallel=state.config.parallel_tool_calls):
            if _is_set(cancel_event):
                for request in stage:
                    record = ToolCallRecord(id=request.id, tool_name=request.tool_name, arguments=dict(request.arguments))
                    record.fail(CANCELLED_BEFORE_EXECUTION)
                    records.append(record)
                continue

            # Every call of the stage is announced before any handler starts
            for request in stage:
                self.executor.announce(request, emitter)
            stage_records = await asyncio.gather(
                *(
                    self.executor.execute(
                        resolved[request.id][0],
                        request,
                        arguments=resolved[request.id][1],
                        timeout=resolved[request.id][0].timeout or state.config.tool_timeout,
                        events=emitter,
                        announced=True,
                    )
                    for request in stage
                )
            )
            records.extend(stage_records)

        for record in records:
            state.tool_calls.append(record)
            state.append(
                Message(
                    role="tool",
                    content=format_tool_result(record),
                    tool_call_id=record.id,
                    metadata={"status": record.status.value},
                )
            )
        return records

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _build_system_prompt(self, config: LoopConfig, message: str, emitter: EventEmitter) -> str:
        prompt = config.system_prompt
        if self.retriever is None:
            return prompt

        try:
            results = await self.retriever.retrieve(message)
        except Exception as e:
            logger.warning("Knowledge retrieval failed, continuing without it: %s", e)
            return prompt

        if not results:
            return prompt

        emitter.emit(KnowledgeRetrievedEvent(results=list(results)))
        knowledge = f"Relevant knowledge:\n{format_knowledge(results)}"
        return f"{prompt}\n\n{knowledge}" if prompt else knowledge

    def _gated_requests(self, config: LoopConfig, requests: Sequence[ToolCall]) -> list[ToolCall]:
        """Requests that must wait for a caller decision before anything runs."""
        if config.require_confirmation:
            return list(requests)
        return [
            request
            for request in requests
            if getattr(self.registry.get(request.tool_name), "requires_confirmation", False)
        ]

    def _risk_level(self, request: ToolCall) -> Optional[str]:
        return getattr(self.registry.get(request.tool_name), "risk_level", None)

    def _finish(self, state: LoopState, status: LoopStatus) -> LoopResult:
        state.status = status
        state.end_time = time.time()
        return build_result(state)


def _is_set(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


async def _until_cancelled(
    awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event]
) -> tuple[Optional[T], bool]:
    """Await `awaitable` unless `cancel_event` fires first.

    Returns (result, False) on completion, or (None, True) after cancelling
    the pending awaitable.
    """
    if cancel_event is None:
        return await awaitable, False
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        return None, True

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result(), False

    task.cancel()
    await asyncio.wait({task})
    return None, True
