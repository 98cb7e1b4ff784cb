# empath/services/pipeline.py turns conversation snapshots into decisions, reflections and memories
"""
Analysis pipeline.

    submit(state) -> settle -> change filter -> minimum-content filter -> fan-out
                                                                          |-- decision lane -> deferred action
                                                                          '-- reflection lane -> emotional history, memory write

- settle: every submit restarts a debounce timer, only the last snapshot of a
  burst goes on
- decision lane: single-flight, a newer snapshot cancels the call in flight;
  timeouts and failures become Decision.default()
- reflection lane: snapshots are buffered per window and only the latest one
  is analyzed; failures produce nothing; results are shown latest-wins
- safety timer: one shared cutoff, reset by every qualifying snapshot; when it
  fires everything in flight is cancelled and late results are ignored
"""
from __future__ import annotations

import asyncio
import datetime as dt
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple

from empath.core.config import PIPELINE_CONFIG
from empath.models.conversation_state import ConversationState, LastAction
from empath.models.decision import Decision, StateAnalysis
from empath.models.reflection import MemoryAction, Reflection
from empath.protocols.memory import MemoryWriter
from empath.protocols.services import DecisionService, ReflectionService
from empath.utils.exception import ProviderError, print_error, print_warning
from .emotional_history import EmotionalHistory
from .timer import ResettableTimer

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]
ActionHandler = Callable[[Decision, ConversationState, Dict[str, Any]], Awaitable[Optional[str]]]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class AnalysisPipeline:
    """Pipeline service

    Owns the emotional history and the last autonomous action; the host
    passes both into every snapshot it builds:

        >>> state = (ConversationStateBuilder.create()
        ...          .with_emotional_history(pipeline.emotional_history.entries())
        ...          .with_last_ai_action(pipeline.last_action)
        ...          ...
        ...          .build())
        >>> pipeline.submit(state)
    """

    def __init__(
        self,
        decision_service: DecisionService,
        reflection_service: ReflectionService,
        memory: Optional[MemoryWriter] = None,
        action_handler: Optional[ActionHandler] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            decision_service: answers "should the agent act now"
            reflection_service: reads the user's emotional state
            memory: store that receives reflection memory actions; None disables writes
            action_handler: writes the outgoing message for a due action whose
                            decision carries no suggested message
            settings: overrides for PIPELINE_CONFIG keys
        """
        self.decision_service = decision_service
        self.reflection_service = reflection_service
        self.memory = memory
        self.action_handler = action_handler
        self.settings = {**PIPELINE_CONFIG, **(settings or {})}

        self.running = False
        self.emotional_history = EmotionalHistory()
        self.last_action: Optional[LastAction] = None
        self.last_message_time: Optional[dt.datetime] = None
        self.min_contact_gap_ms = self.settings["min_contact_gap_ms"]
        self.last_decision: Optional[Decision] = None
        self.decision_history: Deque[StateAnalysis] = deque(maxlen=self.settings["decision_history_size"])
        self.reflections: Deque[Reflection] = deque(maxlen=self.settings["reflection_history_size"])

        self.decision_listeners: List[Listener] = []
        self.reflection_listeners: List[Listener] = []
        self.message_listeners: List[Listener] = []

        self._settle_timer = ResettableTimer(self.settings["settle_window_s"], self._on_settled, "settle")
        self._reflection_timer = ResettableTimer(self.settings["reflection_buffer_s"], self._flush_reflection, "reflection-buffer")
        self._safety_timer = ResettableTimer(self.settings["safety_timeout_s"], self._on_safety_timeout, "safety")

        self._last_forwarded: Optional[Tuple[str, int]] = None
        self._round = 0
        self._abandoned_through = 0  # rounds <= this were cut off by the safety timer
        self._decision_task: Optional[asyncio.Task] = None
        self._reflection_tasks: Set[asyncio.Task] = set()
        self._background_tasks: Set[asyncio.Task] = set()
        self._pending_reflection: Optional[Tuple[ConversationState, int]] = None
        self._reflection_seq = 0
        self._shown_reflection_seq = 0
        self._responding = False
        self._emitting = False
        self.stats = {"submitted": 0, "forwarded": 0, "decisions": 0, "decision_fallbacks": 0,
                      "reflections": 0, "memory_writes": 0, "actions": 0, "safety_cutoffs": 0}

    # ---------- lifecycle ---------- #
    def start(self) -> None:
        self.running = True
        logger.info("Analysis pipeline started")

    async def stop(self) -> None:
        """Cancel timers and every task the pipeline spawned."""
        self.running = False
        for timer in (self._settle_timer, self._reflection_timer, self._safety_timer):
            timer.cancel()
        self._pending_reflection = None

        tasks = list(self._reflection_tasks) + list(self._background_tasks)
        if self._decision_task is not None:
            tasks.append(self._decision_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._decision_task = None
        logger.info("Analysis pipeline stopped")

    # ---------- host signals ---------- #
    def on_decision(self, callback: Listener) -> None:
        self.decision_listeners.append(callback)

    def on_reflection(self, callback: Listener) -> None:
        self.reflection_listeners.append(callback)

    def on_message(self, callback: Listener) -> None:
        self.message_listeners.append(callback)

    def set_responding(self, responding: bool) -> None:
        """The host marks the agent as busy answering; due actions are skipped meanwhile."""
        self._responding = responding

    def record_action(self, action_type: str, reasoning: str) -> LastAction:
        self.last_action = LastAction(type=action_type, timestamp=_utcnow(), reasoning=reasoning)
        return self.last_action

    def record_message(self) -> None:
        """A chat message was exchanged; autonomous actions wait min_contact_gap_ms after it."""
        self.last_message_time = _utcnow()

    def set_contact_gap(self, gap_ms: int) -> None:
        if gap_ms < 0:
            raise ValueError(f"contact gap must not be negative, got {gap_ms}")
        self.min_contact_gap_ms = int(gap_ms)

    def _too_soon_after_message(self) -> bool:
        if self.last_message_time is None:
            return False
        elapsed_ms = (_utcnow() - self.last_message_time).total_seconds() * 1000
        return elapsed_ms < self.min_contact_gap_ms

    def submit(self, state: ConversationState) -> None:
        """Hand in a fresh snapshot; returns immediately."""
        if not self.running:
            logger.debug("Pipeline not running, snapshot ignored")
            return
        self.stats["submitted"] += 1
        self._settle_timer.restart(state)

    # ---------- stages ---------- #
    def _on_settled(self, state: ConversationState) -> None:
        key = (state.current_input, len(state.conversation_history))
        if key == self._last_forwarded:
            return
        self._last_forwarded = key
        if state.trimmed_length < self.settings["min_input_chars"]:
            return

        self._round += 1
        round_id = self._round
        self.stats["forwarded"] += 1
        self._safety_timer.restart(round_id)
        self._start_decision(state, round_id)
        self._pending_reflection = (state, round_id)
        self._reflection_timer.start_if_idle()

    def _is_abandoned(self, round_id: int) -> bool:
        return round_id <= self._abandoned_through

    def _on_safety_timeout(self, round_id: int) -> None:
        self._abandoned_through = max(self._abandoned_through, round_id)
        cancelled = 0
        if self._decision_task is not None and not self._decision_task.done():
            self._decision_task.cancel()
            cancelled += 1
        for task in list(self._reflection_tasks):
            task.cancel()
            cancelled += 1
        self._reflection_timer.cancel()
        self._pending_reflection = None
        if not cancelled:
            logger.debug(f"Safety timer of round {round_id} expired with nothing in flight")
            return
        self.stats["safety_cutoffs"] += 1
        print_warning(self._on_safety_timeout, f"safety timeout reached, cancelled {cancelled} lane calls", "low")

    # ---------- decision lane ---------- #
    def _start_decision(self, state: ConversationState, round_id: int) -> None:
        if self._decision_task is not None and not self._decision_task.done():
            self._decision_task.cancel()
            logger.debug("Superseded in-flight decision")
        self._decision_task = asyncio.create_task(self._run_decision(state, round_id), name=f"decision-{round_id}")

    async def _run_decision(self, state: ConversationState, round_id: int) -> None:
        fallback = True
        try:
            raw = await asyncio.wait_for(
                self.decision_service.decide(state), timeout=self.settings["decision_timeout_s"]
            )
            fallback = not isinstance(raw, (Decision, Mapping))
            decision = Decision.coerce(raw)
        except asyncio.TimeoutError:
            print_warning(self._run_decision, "decision service timed out, waiting instead", "low")
            decision = Decision.default("Decision timed out")
        except Exception as e:
            print_warning(self._run_decision, f"decision service failed: {e}", "low")
            decision = Decision.default()

        if self._is_abandoned(round_id):
            logger.debug(f"Ignoring decision of abandoned round {round_id}")
            return
        if fallback:
            self.stats["decision_fallbacks"] += 1

        analysis = StateAnalysis(state=state, decision=decision)
        self.decision_history.append(analysis)
        self.last_decision = decision
        self.stats["decisions"] += 1
        await self._notify(self.decision_listeners, analysis)

        if decision.should_act:
            self._spawn(self._deferred_action(analysis), f"action-{round_id}")

    async def _deferred_action(self, analysis: StateAnalysis) -> None:
        decision = analysis.decision
        await asyncio.sleep(decision.timing_ms / 1000)

        if self.last_action is not None and self.last_action.timestamp > analysis.timestamp:
            logger.debug("Skipping action, a newer action was taken")
            return
        if self._responding or self._emitting:
            logger.debug("Skipping action, agent is busy responding")
            return
        if self._too_soon_after_message():
            logger.debug(f"Skipping action, last message is less than {self.min_contact_gap_ms}ms old")
            return

        self._emitting = True
        try:
            message = decision.suggested_message
            if not message and self.action_handler is not None:
                try:
                    message = await self.action_handler(
                        decision, analysis.state, self.emotional_history.current_context()
                    )
                except Exception as e:
                    print_warning(self._deferred_action, f"action handler failed: {e}", "low")
                    return
                if self._too_soon_after_message():
                    logger.debug("Dropping composed message, a chat message arrived meanwhile")
                    return
            if not message:
                logger.debug("Skipping action, nothing to say")
                return
            self.record_action(decision.action_type.value, decision.reasoning)
            self.stats["actions"] += 1
            await self._notify(self.message_listeners, {
                "content": message,
                "action_type": decision.action_type.value,
                "priority": decision.priority.value,
                "reasoning": decision.reasoning,
            })
        finally:
            self._emitting = False

    # ---------- reflection lane ---------- #
    def _flush_reflection(self) -> None:
        pending, self._pending_reflection = self._pending_reflection, None
        if pending is None:
            return
        state, round_id = pending
        if state.trimmed_length < self.settings["min_reflection_chars"]:
            return
        self._reflection_seq += 1
        task = asyncio.create_task(
            self._run_reflection(state, round_id, self._reflection_seq), name=f"reflection-{self._reflection_seq}"
        )
        self._reflection_tasks.add(task)
        task.add_done_callback(self._reflection_tasks.discard)

    async def _run_reflection(self, state: ConversationState, round_id: int, seq: int) -> None:
        try:
            raw = await asyncio.wait_for(
                self.reflection_service.reflect(state), timeout=self.settings["reflection_timeout_s"]
            )
        except asyncio.TimeoutError:
            logger.info("Reflection service timed out, skipping")
            return
        except Exception as e:
            print_warning(self._run_reflection, f"reflection service failed: {e}", "low")
            return

        reflection = Reflection.coerce(raw)
        if reflection is None or self._is_abandoned(round_id):
            return
        if seq < self._shown_reflection_seq:
            logger.debug(f"Dropping stale reflection {seq}, already showing {self._shown_reflection_seq}")
            return
        self._shown_reflection_seq = seq

        self.reflections.append(reflection)
        self.emotional_history.add(reflection.to_emotional_entry())
        self.stats["reflections"] += 1
        await self._notify(self.reflection_listeners, reflection)

        action = reflection.memory_action
        if action is not None and action.should_save and self.memory is not None:
            self._spawn(self._save_memory(action), f"memory-write-{seq}")

    async def _save_memory(self, action: MemoryAction) -> Optional[str]:
        """Insert the reflection's memory; embedding failures are retried, then logged."""
        attempts = 1 + self.settings["memory_write_retries"]
        for attempt in range(1, attempts + 1):
            try:
                entry_id = await self.memory.insert(
                    action.content,
                    action.memory_type,
                    importance=action.importance,
                    tags=action.tags,
                    context=action.reasoning or None,
                )
                self.stats["memory_writes"] += 1
                logger.info(f"Saved {action.memory_type.value} memory {entry_id}")
                return entry_id
            except ProviderError as e:
                print_warning(self._save_memory, f"memory write failed ({attempt}/{attempts}), retryable: {e}", "medium")
            except ValueError as e:
                print_warning(self._save_memory, f"memory write rejected: {e}", "low")
                return None
        return None

    # ---------- helpers ---------- #
    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _notify(self, listeners: List[Listener], payload: Any) -> None:
        for callback in list(listeners):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                print_error(callback, f"listener failed: {e}")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "settling": self._settle_timer.pending,
            "decision_in_flight": self._decision_task is not None and not self._decision_task.done(),
            "reflections_in_flight": len(self._reflection_tasks),
            "reflection_buffered": self._pending_reflection is not None,
            "safety_timer_armed": self._safety_timer.pending,
            "responding": self._responding,
            "emitting": self._emitting,
            "min_contact_gap_ms": self.min_contact_gap_ms,
            "last_message_time": self.last_message_time.isoformat() if self.last_message_time else None,
            "decision_history_size": len(self.decision_history),
            "reflection_history_size": len(self.reflections),
            "emotional_history_size": len(self.emotional_history),
            "emotional_context": self.emotional_history.current_context(),
            "last_decision": self.last_decision.to_dict() if self.last_decision else None,
            "last_action": self.last_action.to_dict() if self.last_action else None,
            "stats": dict(self.stats),
        }
