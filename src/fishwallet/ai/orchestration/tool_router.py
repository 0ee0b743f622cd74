"""Route tool calls to family executors and normalize their outcomes.

The router never raises for a tool failure. Unknown names, schema violations,
executor errors and timeouts all come back as ``ToolResult(success=False)``
so the round loop can feed them to the model like any other result.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..tools.errors import InvalidParameterError, ToolError, ToolTimeoutError, UnavailableError
from ..tools.registry import ToolCatalog, ToolFamily
from ..tools.research import search_hits_from
from .events import AuxiliaryEvent, Proposal, SearchResults, SearchStarted, ToolResultEvent
from .types import RequestContext, ToolCall, ToolResult

__all__ = [
    "FamilyExecutor",
    "ToolRouter",
    "AuxiliaryRules",
    "StandardAuxiliaryRules",
    "NoAuxiliaryEvents",
    "UNKNOWN_TOOL_ERROR",
]

LOGGER = logging.getLogger(__name__)

UNKNOWN_TOOL_ERROR = "unknown tool"


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class FamilyExecutor(Protocol):
    """Runs every tool of one :class:`ToolFamily`.

    ``execute`` returns the ``data`` payload of a successful call (or a ready
    :class:`ToolResult`) and raises :class:`ToolError` for domain failures.
    """

    async def execute(self, name: str, arguments: Mapping[str, Any], context: RequestContext) -> Any:
        ...


class AuxiliaryRules(Protocol):
    """Decides which UI-facing events surround a tool execution."""

    def before(self, call: ToolCall) -> Sequence[AuxiliaryEvent]:
        ...

    def after(self, call: ToolCall, result: ToolResult) -> Sequence[AuxiliaryEvent]:
        ...


# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------


class ToolRouter:
    """Dispatches a tool call to exactly one family executor.

    The dispatch table maps each catalog tool name to its family tag; the
    family tag selects the executor.

    Example:
        router = ToolRouter(catalog, {ToolFamily.GRAPH: GraphToolExecutor(store)})
        result = await router.execute(call, context)
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        executors: Mapping[ToolFamily, FamilyExecutor],
        *,
        timeout: float | None = 120.0,
        validate_inputs: bool = True,
    ) -> None:
        """Initialize the router.

        Args:
            catalog: Tools offered for this feature.
            executors: One executor per family the catalog uses.
            timeout: Per-call execution limit in seconds; ``None`` disables it.
            validate_inputs: Check inputs against the catalog's JSON Schema.
        """
        self._catalog = catalog
        self._executors = dict(executors)
        self._routes: dict[str, ToolFamily] = {schema.name: schema.family for schema in catalog}
        self._timeout = timeout if timeout and timeout > 0 else None
        self._validate_inputs = validate_inputs
        missing = {family for family in self._routes.values() if family not in self._executors}
        if missing:
            LOGGER.warning(
                "No executor registered for tool families: %s",
                ", ".join(sorted(family.value for family in missing)),
            )

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    def family_of(self, name: str) -> ToolFamily | None:
        return self._routes.get(name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, call: ToolCall, context: RequestContext) -> ToolResult:
        """Run ``call`` and return its normalized result.

        Args:
            call: The tool call to execute.
            context: Request the call belongs to.

        Returns:
            A :class:`ToolResult` whose ``tool_call_id`` is ``call.id``.
        """
        started = time.perf_counter()
        family = self._routes.get(call.name)
        if family is None:
            LOGGER.warning("Model requested unknown tool %r (call %s)", call.name, call.id)
            return ToolResult.fail(call.id, UNKNOWN_TOOL_ERROR)

        LOGGER.info("Executing tool %s (call %s, family %s)", call.name, call.id, family.value)
        try:
            data = await self._dispatch(family, call, context)
        except ToolError as exc:
            result = ToolResult.fail(call.id, exc.describe(), duration_ms=_elapsed_ms(started))
            LOGGER.info("Tool %s failed: %s", call.name, exc)
            return result
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", call.name)
            return ToolResult.fail(call.id, str(exc) or exc.__class__.__name__, duration_ms=_elapsed_ms(started))

        duration = _elapsed_ms(started)
        if isinstance(data, ToolResult):
            result = dataclasses.replace(data, tool_call_id=call.id, duration_ms=duration)
        else:
            result = ToolResult.ok(call.id, data, duration_ms=duration)
        LOGGER.info(
            "Tool %s finished in %.1fms (success=%s)",
            call.name,
            result.duration_ms,
            result.success,
        )
        return result

    async def _dispatch(self, family: ToolFamily, call: ToolCall, context: RequestContext) -> Any:
        executor = self._executors.get(family)
        if executor is None:
            raise UnavailableError(message=f"No executor is registered for {family.value} tools")
        if self._validate_inputs:
            problems = self._catalog.validate(call.name, call.input)
            if problems:
                raise _invalid_input(call.name, problems)
        operation = executor.execute(call.name, dict(call.input), context)
        if self._timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, self._timeout)
        except asyncio.TimeoutError as exc:
            raise ToolTimeoutError(message=f"Tool '{call.name}' timed out after {self._timeout:g}s") from exc


def _invalid_input(name: str, problems: Sequence[str]) -> ToolError:
    return InvalidParameterError(
        message=f"Invalid input for {name}: " + "; ".join(problems),
        details={"errors": list(problems)},
    )


def _elapsed_ms(started: float) -> float:
    return max(0.0, (time.perf_counter() - started) * 1000.0)


# -----------------------------------------------------------------------------
# Auxiliary event rules
# -----------------------------------------------------------------------------


class NoAuxiliaryEvents:
    """Rules that only report the tool result itself."""

    def before(self, call: ToolCall) -> Sequence[AuxiliaryEvent]:
        return ()

    def after(self, call: ToolCall, result: ToolResult) -> Sequence[AuxiliaryEvent]:
        return (_result_event(call, result),)


class StandardAuxiliaryRules(NoAuxiliaryEvents):
    """Search progress, search results and note-proposal events.

    Args:
        search_tools: Tool names that count as searches.
        proposal_type: ``data["type"]`` value that marks a note proposal.
    """

    def __init__(
        self,
        *,
        search_tools: frozenset[str] | set[str] = frozenset({"firecrawl_search"}),
        proposal_type: str = "note_proposal",
    ) -> None:
        self._search_tools = frozenset(search_tools)
        self._proposal_type = proposal_type

    def before(self, call: ToolCall) -> Sequence[AuxiliaryEvent]:
        if call.name in self._search_tools:
            return (SearchStarted(tool_call_id=call.id, query=str(call.input.get("query", ""))),)
        return ()

    def after(self, call: ToolCall, result: ToolResult) -> Sequence[AuxiliaryEvent]:
        events: list[AuxiliaryEvent] = []
        data = result.data if isinstance(result.data, Mapping) else None
        if result.success and call.name in self._search_tools:
            query = str((data or {}).get("query") or call.input.get("query", ""))
            events.append(SearchResults(tool_call_id=call.id, query=query, results=tuple(search_hits_from(data))))
        if result.success and data is not None and data.get("type") == self._proposal_type:
            proposal = data.get("proposal")
            if isinstance(proposal, Mapping):
                events.append(Proposal(tool_call_id=call.id, proposal=dict(proposal)))
        events.append(_result_event(call, result))
        return tuple(events)


def _result_event(call: ToolCall, result: ToolResult) -> ToolResultEvent:
    return ToolResultEvent(
        tool_call_id=call.id,
        name=call.name,
        success=result.success,
        data=result.data,
        error=result.error,
    )
