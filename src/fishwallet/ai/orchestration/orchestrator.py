"""AI Orchestrator: the single entry point for assistant exchanges.

Each feature (dependency graph, synthesis/app builder, voice page assistant)
runs the same round loop; a :class:`~fishwallet.ai.profiles.FeatureProfile`
supplies the tool catalog, system preamble and hooks that differ.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping, Sequence, Union

from ...services.panel_errors import PanelErrorStore
from ...services.settings import Settings
from ...services.storage import WorkspaceStore
from ..profiles import FeatureProfile
from ..tools.registry import ToolCatalog, ToolFamily
from .broadcaster import EventBroadcaster, Observer
from .controller import DEFAULT_MAX_ROUNDS, ControllerConfig, RoundController
from .event_log import ExchangeEventLogger, ExchangeLog
from .side_effects import SnapshotTrigger
from .stream_consumer import CANCELLED_MESSAGE, ModelClient, StreamConsumer
from .tool_router import FamilyExecutor, ToolRouter
from .types import ExchangeOutcome, Message, RequestContext, merge_usage

__all__ = [
    "AIOrchestrator",
    "OrchestratorConfig",
    "UserInput",
]

LOGGER = logging.getLogger(__name__)

UserInput = Union[str, Message, Sequence[Union[str, Message]]]


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    """Limits and timings for exchanges.

    Attributes:
        max_rounds: Round ceiling for one round loop. The initial loop and
            every repair loop each get the full ceiling, so one exchange runs
            at most ``(1 + max_error_fix_rounds) * max_rounds`` rounds.
        max_error_fix_rounds: Repair loops allowed after preview errors.
        panel_error_check_delay: Seconds to wait before checking the preview.
        stream_timeout: Longest wait for the next model event.
        tool_timeout: Longest single tool execution.
        concurrent_tools: Run one round's tool calls concurrently.
        stop_on_disconnect: Stop before the next round when the observer leaves.
    """

    max_rounds: int = DEFAULT_MAX_ROUNDS
    max_error_fix_rounds: int = 3
    panel_error_check_delay: float = 1.5
    stream_timeout: float | None = 120.0
    tool_timeout: float | None = 120.0
    concurrent_tools: bool = False
    stop_on_disconnect: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "OrchestratorConfig":
        config = cls(
            max_rounds=settings.max_tool_rounds,
            max_error_fix_rounds=settings.max_error_fix_rounds,
            panel_error_check_delay=settings.panel_error_check_delay,
            stream_timeout=settings.stream_timeout,
            tool_timeout=settings.tool_timeout,
            concurrent_tools=settings.concurrent_tool_execution,
        )
        return replace(config, **overrides) if overrides else config

    def controller_config(self) -> ControllerConfig:
        return ControllerConfig(
            max_rounds=self.max_rounds,
            concurrent_tools=self.concurrent_tools,
            stop_on_disconnect=self.stop_on_disconnect,
        )


# -----------------------------------------------------------------------------
# AI Orchestrator
# -----------------------------------------------------------------------------


class AIOrchestrator:
    """Runs assistant exchanges against a model client and a tool catalog.

    Example:
        orchestrator = AIOrchestrator(client, store, build_executors(store))
        outcome = await orchestrator.run_exchange(
            RequestContext(idea_id="idea-1", feature="graph"),
            "Which payment provider should I use?",
            graph_profile(),
            observer=print,
        )
    """

    def __init__(
        self,
        client: ModelClient,
        store: WorkspaceStore,
        executors: Mapping[ToolFamily, FamilyExecutor],
        *,
        config: OrchestratorConfig | None = None,
        panel_errors: PanelErrorStore | None = None,
        event_logger: ExchangeEventLogger | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Model client that streams one round at a time.
            store: Storage collaborator for preambles and snapshots.
            executors: One executor per tool family.
            config: Orchestrator configuration.
            panel_errors: Preview error store used by the repair loop.
            event_logger: Factory for JSONL debug logs of each exchange.
            sleep: Awaitable delay, replaceable in tests.
        """
        self._client = client
        self._store = store
        self._executors = dict(executors)
        self._config = config or OrchestratorConfig()
        self._panel_errors = panel_errors
        self._event_logger = event_logger or ExchangeEventLogger(enabled=False)
        self._sleep = sleep
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def client(self) -> ModelClient:
        return self._client

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def set_config(self, config: OrchestratorConfig) -> None:
        self._config = config

    @property
    def active_requests(self) -> tuple[str, ...]:
        return tuple(self._cancel_events)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, key: str) -> bool:
        """Ask the exchange running under ``key`` to stop before its next round."""
        event = self._cancel_events.get(key)
        if event is None:
            LOGGER.debug("cancel(%s) called but no exchange is active", key)
            return False
        LOGGER.info("Cancelling exchange for %s (caller requested cancellation)", key)
        event.set()
        return True

    def _register(self, key: str) -> asyncio.Event:
        previous = self._cancel_events.get(key)
        if previous is not None:
            LOGGER.info("Replacing active exchange for %s", key)
            previous.set()
        event = asyncio.Event()
        self._cancel_events[key] = event
        return event

    def _unregister(self, key: str, event: asyncio.Event) -> None:
        if self._cancel_events.get(key) is event:
            del self._cancel_events[key]

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    async def run_exchange(
        self,
        context: RequestContext,
        user_input: UserInput,
        tools: FeatureProfile | ToolCatalog,
        *,
        observer: Observer | None = None,
        history: Sequence[Message] = (),
    ) -> ExchangeOutcome:
        """Run one exchange to completion.

        The observer receives every stream event and auxiliary event in
        order, then exactly one ``stream_end`` or ``stream_error``.

        Args:
            context: Request being served.
            user_input: The user's message or messages.
            tools: Feature profile, or a bare catalog for an ad hoc feature.
            observer: Receives forwarded events; may be sync or async.
            history: Earlier conversation placed before the user input.

        Returns:
            The exchange outcome. Failures are reported in it, not raised.
        """
        profile = _as_profile(tools, context.feature)
        base = [*history, *_user_messages(user_input)]
        cancel_event = self._register(context.cancel_key)
        log_run = self._event_logger.start_run(
            request_id=context.request_id,
            idea_id=context.idea_id,
            feature=profile.name,
            prompt=base[-1].text if base else "",
            metadata=context.metadata,
        )
        broadcaster = EventBroadcaster(observer, event_log=log_run)
        LOGGER.info(
            "Starting %s exchange %s for idea %s (%d tools)",
            profile.name,
            context.request_id,
            context.idea_id,
            len(profile.catalog),
        )
        try:
            with log_run:
                outcome = await self._run(context, profile, base, broadcaster, cancel_event, log_run)
                await self._conclude(outcome, broadcaster, log_run)
                return outcome
        except asyncio.CancelledError:
            LOGGER.info("Exchange %s was cancelled by its task", context.request_id)
            await broadcaster.finish("cancelled")
            return ExchangeOutcome(status="cancelled", error=CANCELLED_MESSAGE)
        except Exception as exc:
            LOGGER.exception("Exchange %s failed", context.request_id)
            message = str(exc) or exc.__class__.__name__
            await broadcaster.fail(message)
            return ExchangeOutcome(status="error", error=message)
        finally:
            self._unregister(context.cancel_key, cancel_event)

    async def _run(
        self,
        context: RequestContext,
        profile: FeatureProfile,
        base: list[Message],
        broadcaster: EventBroadcaster,
        cancel_event: asyncio.Event,
        log_run: ExchangeLog,
    ) -> ExchangeOutcome:
        router = ToolRouter(profile.catalog, self._executors, timeout=self._config.tool_timeout)
        consumer = StreamConsumer(self._client, timeout=self._config.stream_timeout)

        async def loop(messages: Sequence[Message]) -> ExchangeOutcome:
            controller = RoundController(
                consumer,
                router,
                broadcaster,
                config=self._config.controller_config(),
                rules=profile.rules,
                system=profile.system_prompt(self._store, context.idea_id) or None,
                cancel_event=cancel_event,
                event_log=log_run,
            )
            return await controller.run(messages, context)

        outcome = await loop(base)
        if profile.panel_error_repair and self._panel_errors is not None:
            outcome = await self._repair(context, base, outcome, loop, cancel_event)

        if outcome.succeeded and profile.snapshots:
            trigger = SnapshotTrigger(self._store, profile.snapshot_tools())
            snapshot = await trigger.run(context, outcome.tools_used, broadcaster)
            if snapshot is not None:
                outcome.snapshot_version = snapshot.version_number
        return outcome

    async def _repair(
        self,
        context: RequestContext,
        base: list[Message],
        outcome: ExchangeOutcome,
        loop: Callable[[Sequence[Message]], Awaitable[ExchangeOutcome]],
        cancel_event: asyncio.Event,
    ) -> ExchangeOutcome:
        """Re-run the loop while the preview reports runtime errors."""

        assert self._panel_errors is not None
        while outcome.status == "completed" and outcome.repairs < self._config.max_error_fix_rounds:
            if cancel_event.is_set():
                break
            await self._sleep(self._config.panel_error_check_delay)
            if cancel_event.is_set():
                break
            request = self._panel_errors.format_for_model(context.idea_id)
            if request is None:
                break
            self._panel_errors.clear(context.idea_id)
            LOGGER.info(
                "Preview reported errors for idea %s; starting repair %d/%d",
                context.idea_id,
                outcome.repairs + 1,
                self._config.max_error_fix_rounds,
            )
            repaired = await loop([*base, Message.user(request)])
            outcome = _combine(outcome, repaired)
        return outcome

    async def _conclude(self, outcome: ExchangeOutcome, broadcaster: EventBroadcaster, log_run: ExchangeLog) -> None:
        if outcome.status == "error":
            message = outcome.error or "Exchange failed"
            await broadcaster.fail(message)
            log_run.log_failure(message=message, details={"rounds": outcome.rounds})
            return
        await broadcaster.finish(outcome.status)
        log_run.log_completion(
            status=outcome.status,
            rounds=outcome.rounds,
            tools_used=outcome.tools_used,
            usage=outcome.usage,
        )

    async def aclose(self) -> None:
        """Cancel outstanding exchanges and close the client."""
        for event in self._cancel_events.values():
            event.set()
        close = getattr(self._client, "aclose", None)
        if callable(close):
            with contextlib.suppress(Exception):
                result = close()
                if inspect.isawaitable(result):
                    await result


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _as_profile(tools: FeatureProfile | ToolCatalog, feature: str) -> FeatureProfile:
    if isinstance(tools, FeatureProfile):
        return tools
    return FeatureProfile(name=feature, catalog=tools, preamble=lambda store, idea_id: "")


def _user_messages(user_input: UserInput) -> list[Message]:
    if isinstance(user_input, (str, Message)):
        items: Sequence[str | Message] = (user_input,)
    else:
        items = user_input
    messages = [item if isinstance(item, Message) else Message.user(item) for item in items]
    if not messages:
        raise ValueError("At least one user message is required")
    return messages


def _combine(first: ExchangeOutcome, repair: ExchangeOutcome) -> ExchangeOutcome:
    usage = merge_usage(dict(first.usage), repair.usage)
    return ExchangeOutcome(
        status=repair.status,
        rounds=first.rounds + repair.rounds,
        turns=first.turns + repair.turns,
        final_text=repair.final_text or first.final_text,
        error=repair.error,
        tools_used=tuple(dict.fromkeys(first.tools_used + repair.tools_used)),
        usage=usage,
        repairs=first.repairs + 1,
    )
