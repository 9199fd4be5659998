"""Step-by-step interpreter for scraper instruction trees."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from webscraper.schemas.execution import (
    ConditionInfo,
    DeleteDataInfo,
    DeleteOperation,
    InstructionEntry,
    JumpInfo,
    MarkerInfo,
    PageActionInfo,
    ResolvedBatchItem,
    SaveDataBatchInfo,
    SaveDataInfo,
    SetManyOperation,
    SetOperation,
    UrlChange,
)
from webscraper.schemas.scraper import (
    ClickAction,
    ConditionInstruction,
    DeleteDataInstruction,
    EvaluateAction,
    IsVisibleCondition,
    JumpInstruction,
    MarkerInstruction,
    NavigateAction,
    PageActionInstruction,
    SaveDataBatchInstruction,
    SaveDataInstruction,
    ScrollToElementAction,
    TextEqualsCondition,
    TypeAction,
    match_text,
)
from webscraper.scraping.scheduler import now_ms
from webscraper.scraping.special_strings import (
    SpecialStringContext,
    replace_special_strings,
)
from webscraper.scraping.trace import ExecutionTrace
from webscraper.scraping.values import ValueResolver, substitute_selectors
from webscraper.services.data_bridge import DataBridge
from webscraper.services.page_driver import PageDriver


logger = logging.getLogger(__name__)


class MarkerNotFound(RuntimeError):
    """Raised when a jump targets a marker outside every enclosing scope."""

    def __init__(self, marker_name: str) -> None:
        super().__init__(f'Marker "{marker_name}" not found')
        self.marker_name = marker_name


class MaxStepsExceeded(RuntimeError):
    """Raised when a run executes more instructions than allowed."""

    def __init__(self, max_steps: int) -> None:
        super().__init__(f"Maximum number of instruction steps exceeded ({max_steps})")
        self.max_steps = max_steps


@dataclass
class PageActionResult:
    """Outcome of a page action; failures never abort the run."""

    success: bool = True
    error: str | None = None


class ScraperEnvironment:
    """Everything a run can touch: the page driver and the data store.

    External data reads performed while resolving values are recorded on the
    trace attached with :meth:`attach_trace`.
    """

    def __init__(
        self,
        *,
        driver: PageDriver,
        data_bridge: DataBridge,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.driver = driver
        self.data_bridge = data_bridge
        self._trace: ExecutionTrace | None = None
        self.special_strings = SpecialStringContext(
            get_external_data=self.get_external_data,
            get_page_url=self.get_page_url,
            logger=logger,
        )
        self.values = ValueResolver(
            driver=driver,
            data_bridge=data_bridge,
            special_strings=self.special_strings,
            record_operation=self._record_operation,
            clock=clock,
        )

    def attach_trace(self, trace: ExecutionTrace | None) -> None:
        self._trace = trace

    def _record_operation(self, operation: Any) -> None:
        if self._trace is not None:
            self._trace.record_operation(operation)

    async def evaluate_condition(self, condition: Any) -> bool:
        if isinstance(condition, IsVisibleCondition):
            selectors = await substitute_selectors(condition.selectors, self.special_strings)
            return await self.driver.is_element_visible(
                selectors, page_index=condition.page_index or 0
            )
        if isinstance(condition, TextEqualsCondition):
            value = await self.resolve_value(condition.value_selector)
            return match_text(value, condition.text)
        raise TypeError(f"Unsupported condition: {type(condition).__name__}")

    async def _prepare_action(self, action: Any) -> Any:
        if isinstance(action, NavigateAction):
            url = await replace_special_strings(action.url, self.special_strings)
            return action.model_copy(update={"url": url})
        if isinstance(action, (ClickAction, TypeAction, ScrollToElementAction)):
            selectors = await substitute_selectors(action.selectors, self.special_strings)
            return action.model_copy(update={"selectors": selectors})
        return action

    async def perform_page_action(self, action: Any, page_index: int = 0) -> PageActionResult:
        action = await self._prepare_action(action)
        value: str | None = None
        arguments: list[Any] = []
        if isinstance(action, TypeAction):
            value = await self.resolve_value(action.value)
        elif isinstance(action, EvaluateAction):
            arguments = [await self.resolve_value(argument) for argument in action.arguments]

        try:
            await self.driver.perform_page_action(
                action, page_index=page_index, value=value, arguments=arguments
            )
        except Exception as exc:
            logger.exception("Page action %s failed on page %s", action.type, page_index)
            return PageActionResult(success=False, error=str(exc) or type(exc).__name__)
        return PageActionResult()

    async def resolve_value(self, value: Any) -> str | None:
        return await self.values.resolve(value)

    async def get_external_data(self, key: str) -> Any:
        return await self.data_bridge.get(key)

    async def set_external_data(self, key: str, value: str | None) -> None:
        await self.data_bridge.set(key, value)

    async def set_many_external_data(
        self, data_source_name: str, items: Sequence[tuple[str, str | None]]
    ) -> None:
        await self.data_bridge.set_many(data_source_name, items)

    async def delete_external_data(self, data_source_name: str) -> None:
        await self.data_bridge.delete(data_source_name)

    async def get_page_url(self, page_index: int = 0) -> str | None:
        return await self.driver.get_page_url(page_index)


@dataclass
class _OpenEntry:
    entry: InstructionEntry
    page_index: int
    start_url: str | None
    started: float


@dataclass
class _Frame:
    instructions: Sequence[Any]
    index: int = 0
    # condition whose branch this frame runs; timed until the frame is left
    owner: _OpenEntry | None = None


@dataclass
class _RunState:
    frames: list[_Frame] = field(default_factory=list)
    steps: int = 0


class InstructionInterpreter:
    """Execute instructions one at a time using an explicit scope stack.

    Jumps unwind the stack to the scope owning the marker instead of
    recursing, so loops built from markers run in constant stack depth.
    :meth:`cancel`, :meth:`pause` and :meth:`resume` take effect between two
    instructions, never in the middle of one.
    A cancelled interpreter can be reused: every :meth:`run` starts uncancelled.
    """

    def __init__(
        self,
        *,
        max_steps: int | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.max_steps = max_steps
        self._timer = timer
        self._cancelled = False
        self._running = asyncio.Event()
        self._running.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def cancel(self) -> None:
        self._cancelled = True
        self._running.set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def _elapsed_ms(self, started: float) -> float:
        return max((self._timer() - started) * 1000, 0.0)

    async def _checkpoint(self) -> bool:
        if not self._running.is_set():
            logger.info("Execution paused")
            await self._running.wait()
        return not self._cancelled

    async def run(
        self,
        instructions: Sequence[Any],
        env: ScraperEnvironment,
        *,
        trace: ExecutionTrace | None = None,
    ) -> ExecutionTrace:
        """Run ``instructions`` against ``env`` and return the trace.

        A run never raises for a failed instruction: the error is appended as
        the last trace entry. A cancelled run returns its partial trace with no
        terminal entry.
        """

        self._cancelled = False
        trace = trace if trace is not None else ExecutionTrace()
        env.attach_trace(trace)
        state = _RunState(frames=[_Frame(list(instructions))])
        started = self._timer()

        try:
            while state.frames:
                if not await self._checkpoint():
                    logger.info("Execution cancelled after %s step(s)", state.steps)
                    self._settle_open_entries(state)
                    return trace

                frame = state.frames[-1]
                if frame.index >= len(frame.instructions):
                    state.frames.pop()
                    if frame.owner is not None:
                        await self._finish(frame.owner, env)
                    continue

                instruction = frame.instructions[frame.index]
                frame.index += 1

                state.steps += 1
                if self.max_steps is not None and state.steps > self.max_steps:
                    raise MaxStepsExceeded(self.max_steps)

                await self._execute(instruction, state, env, trace)
        except Exception as exc:
            logger.exception("Scraper execution failed")
            self._settle_open_entries(state)
            trace.finish_error(str(exc) or type(exc).__name__, self._elapsed_ms(started))
            return trace
        finally:
            env.attach_trace(None)

        trace.finish_success(self._elapsed_ms(started))
        return trace

    async def _execute(
        self,
        instruction: Any,
        state: _RunState,
        env: ScraperEnvironment,
        trace: ExecutionTrace,
    ) -> None:
        page_index = getattr(instruction, "page_index", 0) or 0
        start_url = await env.get_page_url(page_index)
        entry = InstructionEntry(instruction_info=self._describe(instruction), url=start_url)
        opened = _OpenEntry(entry, page_index, start_url, self._timer())
        trace.append(entry)

        deferred = False
        try:
            deferred = await self._dispatch(instruction, opened, state, env, trace)
        finally:
            if not deferred:
                await self._finish(opened, env)

    async def _finish(self, opened: _OpenEntry, env: ScraperEnvironment) -> None:
        end_url = await env.get_page_url(opened.page_index)
        opened.entry.duration = self._elapsed_ms(opened.started)
        if end_url != opened.start_url:
            opened.entry.url = UrlChange(from_=opened.start_url, to=end_url)

    def _settle_open_entries(self, state: _RunState) -> None:
        for frame in state.frames:
            if frame.owner is not None:
                frame.owner.entry.duration = self._elapsed_ms(frame.owner.started)

    def _describe(self, instruction: Any) -> Any:
        if isinstance(instruction, PageActionInstruction):
            return PageActionInfo(page_index=instruction.page_index, action=instruction.action)
        if isinstance(instruction, ConditionInstruction):
            return ConditionInfo(condition=instruction.if_, is_met=False)
        if isinstance(instruction, SaveDataInstruction):
            return SaveDataInfo(data_key=instruction.data_key, value=instruction.value)
        if isinstance(instruction, SaveDataBatchInstruction):
            return SaveDataBatchInfo(
                data_source_name=instruction.data_source_name, items=instruction.items
            )
        if isinstance(instruction, DeleteDataInstruction):
            return DeleteDataInfo(data_source_name=instruction.data_source_name)
        if isinstance(instruction, MarkerInstruction):
            return MarkerInfo(name=instruction.name)
        if isinstance(instruction, JumpInstruction):
            return JumpInfo(marker_name=instruction.marker_name)
        raise TypeError(f"Unsupported instruction: {type(instruction).__name__}")

    async def _dispatch(
        self,
        instruction: Any,
        opened: _OpenEntry,
        state: _RunState,
        env: ScraperEnvironment,
        trace: ExecutionTrace,
    ) -> bool:
        """Run one instruction; return True when its entry stays open for a branch."""

        info = opened.entry.instruction_info
        if isinstance(instruction, PageActionInstruction):
            result = await env.perform_page_action(instruction.action, instruction.page_index)
            info.success = result.success
            info.error = result.error

        elif isinstance(instruction, ConditionInstruction):
            is_met = await env.evaluate_condition(instruction.if_)
            info.is_met = is_met
            branch = instruction.then if is_met else (instruction.else_ or [])
            logger.debug("Condition %s met: %s", instruction.if_.type, is_met)
            state.frames.append(_Frame(branch, owner=opened))
            return True

        elif isinstance(instruction, SaveDataInstruction):
            value = await env.resolve_value(instruction.value)
            operation = SetOperation(key=instruction.data_key, value=value)
            try:
                await env.set_external_data(instruction.data_key, value)
            except Exception as exc:
                logger.exception("Failed to save %s", instruction.data_key)
                operation.error = str(exc)
            trace.record_operation(operation)

        elif isinstance(instruction, SaveDataBatchInstruction):
            items = [
                ResolvedBatchItem(
                    column_name=item.column_name,
                    value=await env.resolve_value(item.value),
                )
                for item in instruction.items
            ]
            operation = SetManyOperation(
                data_source_name=instruction.data_source_name, items=items
            )
            try:
                await env.set_many_external_data(
                    instruction.data_source_name,
                    [(item.column_name, item.value) for item in items],
                )
            except Exception as exc:
                logger.exception("Failed to save batch in %s", instruction.data_source_name)
                operation.error = str(exc)
            trace.record_operation(operation)

        elif isinstance(instruction, DeleteDataInstruction):
            operation = DeleteOperation(data_source_name=instruction.data_source_name)
            try:
                await env.delete_external_data(instruction.data_source_name)
            except Exception as exc:
                logger.exception("Failed to delete from %s", instruction.data_source_name)
                operation.error = str(exc)
            trace.record_operation(operation)

        elif isinstance(instruction, JumpInstruction):
            for left in reversed(self._jump(instruction.marker_name, state)):
                if left.owner is not None:
                    await self._finish(left.owner, env)

        # markers only mark a position
        return False

    def _jump(self, marker_name: str, state: _RunState) -> list[_Frame]:
        for depth in range(len(state.frames) - 1, -1, -1):
            frame = state.frames[depth]
            for index, candidate in enumerate(frame.instructions):
                if isinstance(candidate, MarkerInstruction) and candidate.name == marker_name:
                    left = state.frames[depth + 1 :]
                    del state.frames[depth + 1 :]
                    frame.index = index + 1
                    return left
        raise MarkerNotFound(marker_name)


__all__ = [
    "InstructionInterpreter",
    "MarkerNotFound",
    "MaxStepsExceeded",
    "PageActionResult",
    "ScraperEnvironment",
]
