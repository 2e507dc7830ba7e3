"""
This module provides the `GatedTurnEngine`, the orchestrator of one
conversational turn.

A turn runs entirely against a `TurnWorkspace`, a private copy of the session,
while the session's turn lock is held:

1. **Probe**: a short, low-temperature request with log-probabilities commits
   to an attention dimension, focus and next step. Its first line yields the
   surprisal and entropy signals, which are scored against the running
   baselines.
2. **Exploration pulse**: when the recent history is stagnant, alternative
   frames are generated and arbitrated; the winner replaces the probe frame.
3. **State resolution**: blend, squash, dimension weighting, hysteresis,
   stagnation buffers and META-cap governance.
4. **Memory**: the attention log grows, fragments decay, the new frame is
   upserted and the bank is pruned.
5. **Budgets and prompt**: the state is mapped to context, memory-injection
   and generation budgets and the main prompt is assembled.
6. **Main call**: the only phase whose failure aborts the turn.
7. **Summary refresh**: on a state-driven cadence.

The workspace is committed only after the main call has succeeded, so a failed
turn leaves no trace in the session. Probe, pulse and summary failures are
logged, recorded as notes, and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .baseline import BaselineTracker
from .budgets import map_generation_params, map_memory_budget
from .completion import (
    ChatMessage,
    CompletionClient,
    CompletionRequest,
    CompletionResponse,
    LangChainCompletionClient,
)
from .config import GateConfig, PromptTemplates
from .easing import clamp, round_half_up
from .errors import CompletionError, TurnFailedError, TurnValidationError
from .exploration import ExplorationPulseController
from .fragments import collapse_whitespace
from .metrics import TurnMetricsEmitter
from .mock import ScriptedCompletionClient, is_mock_mode_enabled
from .probe import estimate_probe_metrics, parse_probe, probe_frame
from .resolver import StateResolver, meta_cap_value, recent_meta_share
from .schemas import (
    FragmentAddView,
    FragmentsDebug,
    FragmentView,
    MemoryDebug,
    MetaDebug,
    MetricsDebug,
    ParamsDebug,
    PulseDebug,
    TurnDebug,
    TurnResponse,
)
from .session_store import SessionStore
from .state import AttentionLogEntry, TurnWorkspace

LOGGER = logging.getLogger(__name__)

MISSING_INPUT_MESSAGE = "Missing sessionId or userText"
SUMMARY_INJECTION_MIN_CHARS = 40
DEBUG_TOP_FRAGMENTS = 10


@dataclass(slots=True)
class TurnResult:
    session_id: str
    turn: int
    assistant_text: str
    debug: TurnDebug

    def to_response(self) -> TurnResponse:
        return TurnResponse(assistant_text=self.assistant_text, debug=self.debug)


class GatedTurnEngine:
    """
    Runs gated turns for any number of sessions.

    Attributes:
        client: Completion client used for every phase.
        store: Session registry providing per-session serialization.
        config: Tunables of the control loop.
        prompts: Prompt templates.
        emitter: Turn metrics emitter.
    """

    def __init__(
        self,
        client: CompletionClient,
        store: SessionStore | None = None,
        config: GateConfig | None = None,
        prompts: PromptTemplates | None = None,
        emitter: TurnMetricsEmitter | None = None,
    ) -> None:
        self.config = config or GateConfig()
        self.client = client
        self.store = store or SessionStore(self.config)
        self.prompts = prompts or PromptTemplates()
        self.emitter = emitter or TurnMetricsEmitter(self.config)
        self.baseline = BaselineTracker(self.config.baseline_eta)
        self.resolver = StateResolver(self.config)
        self.pulse = ExplorationPulseController(client, self.config, self.prompts)

    @classmethod
    def from_environment(cls) -> "GatedTurnEngine":
        """
        Build an engine from ``SPIRAL_GATE_*`` environment variables.

        In mock mode the scripted client replaces the LangChain client, so no
        model credentials are needed.
        """
        config = GateConfig.from_environment()
        config.mock_mode = config.mock_mode or is_mock_mode_enabled()
        client: CompletionClient
        if config.mock_mode:
            LOGGER.info("Mock mode enabled - using scripted completion client")
            client = ScriptedCompletionClient()
        else:
            client = LangChainCompletionClient()
        return cls(client, SessionStore(config), config, PromptTemplates(), TurnMetricsEmitter(config))

    async def run_turn(self, session_id: Optional[str], user_text: Optional[str]) -> TurnResult:
        """
        Execute one turn for ``session_id``.

        Raises:
            TurnValidationError: The session id is missing or the text is blank.
            TurnFailedError: The main completion call failed; the session is
                unchanged.
        """
        text = "" if user_text is None else str(user_text)
        if not session_id or not text.strip():
            raise TurnValidationError(MISSING_INPUT_MESSAGE)

        async with self.store.acquire(session_id) as session:
            workspace = TurnWorkspace(session)
            try:
                result = await self._run(session_id, workspace, text)
            except Exception as exc:
                LOGGER.warning("Turn %d of session %s failed: %s", workspace.turn, session_id, exc)
                await self.emitter.emit(
                    "turn_failed",
                    {"session_id": session_id, "turn": workspace.turn, "error": str(exc)},
                )
                raise
            workspace.commit()

        await self.emitter.emit("turn_completed", self._metrics_payload(result))
        return result

    async def _probe(self, user_text: str, notes: List[str]) -> Optional[CompletionResponse]:
        request = CompletionRequest(
            model=self.config.model,
            messages=[
                ChatMessage("system", self.prompts.probe_system_prompt),
                ChatMessage("user", user_text),
            ],
            temperature=self.config.probe_temperature,
            max_tokens=self.config.probe_max_tokens,
            logprobs=True,
            top_logprobs=self.config.probe_top_logprobs,
        )
        try:
            return await self.client.complete(request)
        except CompletionError as exc:
            LOGGER.warning("Probe request failed: %s", exc)
            notes.append(f"probe failed: {exc}")
            return None

    async def _refresh_summary(
        self,
        *,
        previous: str,
        user_text: str,
        assistant_text: str,
        max_tokens: int,
    ) -> Optional[str]:
        content = self.prompts.get_prompt(
            "summary_request",
            previous=collapse_whitespace(previous) or "(empty)",
            user_text=collapse_whitespace(user_text),
            assistant_text=collapse_whitespace(assistant_text),
        )
        response = await self.client.complete(
            CompletionRequest(
                model=self.config.model,
                messages=[
                    ChatMessage("system", self.prompts.summary_system_prompt),
                    ChatMessage("user", content),
                ],
                temperature=0.0,
                max_tokens=int(clamp(20, 120, round_half_up(max_tokens))),
            )
        )
        summary = collapse_whitespace(response.text)
        if not summary:
            return None
        return summary[: self.config.summary_max_chars]

    async def _run(self, session_id: str, workspace: TurnWorkspace, user_text: str) -> TurnResult:
        turn = workspace.turn
        gate = workspace.gate
        memory = workspace.memory
        notes: List[str] = []

        workspace.history.append(ChatMessage("user", user_text))

        # Probe and signals
        probe = await self._probe(user_text, notes)
        original = probe_frame(parse_probe(probe.text if probe else ""))
        metrics = estimate_probe_metrics(
            probe.token_logprobs if probe else [],
            self.config.probe_first_line_tokens,
        )
        observation = self.baseline.observe(gate, metrics)
        notes.extend(observation.notes)

        # Exploration pulse, judged against the previous turn's state
        pulse = await self.pulse.run(gate, turn=turn, user_text=user_text, original=original)
        notes.extend(pulse.notes)
        effective = pulse.selected or original

        resolution = self.resolver.resolve(
            gate,
            observation=observation,
            dim=effective.dim,
            focus=effective.focus,
            turn=turn,
        )
        notes.extend(resolution.notes)
        state = resolution.state

        if effective.dim and effective.focus:
            memory.attn_log.append(
                AttentionLogEntry(turn=turn, dim=effective.dim, focus=effective.focus, next=effective.next)
            )

        # Fragment memory: decay, then upsert, then prune
        decay_factor = memory.fragments.decay(state)
        last_add = memory.fragments.remember(
            dim=effective.dim,
            focus=effective.focus,
            next=effective.next,
            state=state,
            turn=turn,
        )
        memory.fragments.prune(turn)

        top_salience = memory.fragments.max_salience()
        budget = map_memory_budget(state, top_salience)
        params, param_notes = map_generation_params(
            state,
            context_keep_msgs=budget.ctx_keep_msgs,
            pulse_triggered=pulse.triggered,
            pulse_floor=self.config.pulse_min_output_tokens,
        )
        notes.extend(param_notes)

        # Main prompt
        system_messages = [ChatMessage("system", self.prompts.get_prompt("main_system_prompt", state=state))]
        summary_used: Optional[str] = None
        if memory.summary and budget.summary_chars >= SUMMARY_INJECTION_MIN_CHARS:
            summary_used = memory.summary[: budget.summary_chars]
            system_messages.append(
                ChatMessage("system", self.prompts.get_prompt("summary_injection", summary=summary_used))
            )
        if budget.attn_items > 0 and memory.attn_log:
            system_messages.append(
                ChatMessage(
                    "system",
                    self.prompts.attention_log_prompt(entries=memory.attn_log, max_items=budget.attn_items),
                )
            )
        injected = memory.fragments.top(budget.frag_items)
        if injected:
            system_messages.append(ChatMessage("system", self.prompts.fragments_prompt(fragments=injected)))
            memory.fragments.rehearse(injected, turn)
        system_messages.append(
            ChatMessage(
                "system",
                self.prompts.frame_prompt(
                    dim=effective.dim,
                    focus=effective.focus,
                    next=effective.next,
                    pulse=pulse.triggered,
                ),
            )
        )
        context = [ChatMessage(m.role, m.content) for m in workspace.history[-budget.ctx_keep_msgs:]]

        try:
            main = await self.client.complete(
                CompletionRequest(
                    model=self.config.model,
                    messages=system_messages + context,
                    temperature=params.temperature,
                    max_tokens=params.max_output_tokens,
                )
            )
        except CompletionError as exc:
            raise TurnFailedError(str(exc), session_id=session_id, turn=turn) from exc

        assistant_text = main.text
        workspace.history.append(ChatMessage("assistant", assistant_text))

        if turn - memory.summary_updated_turn >= budget.summary_update_interval:
            try:
                new_summary = await self._refresh_summary(
                    previous=memory.summary,
                    user_text=user_text,
                    assistant_text=assistant_text,
                    max_tokens=budget.summary_update_max_tokens,
                )
            except CompletionError as exc:
                LOGGER.warning("Summary refresh failed at turn %d: %s", turn, exc)
                notes.append(f"summary update failed: {exc}")
            else:
                if new_summary:
                    memory.summary = new_summary
                    memory.summary_updated_turn = turn

        bank = memory.fragments
        debug = TurnDebug(
            probe_text=effective.raw or None,
            probe_text_original=original.raw or None,
            dim=effective.dim,
            focus=effective.focus,
            next=effective.next,
            memory=MemoryDebug(
                **budget.to_dict(),
                fragments=FragmentsDebug(
                    total=len(bank),
                    decay_factor=decay_factor,
                    top_salience=top_salience,
                    last_add=FragmentAddView(**last_add.to_dict()) if last_add else None,
                    injected=[FragmentView(**fragment.snapshot()) for fragment in injected],
                    top=[
                        FragmentView(**fragment.snapshot())
                        for fragment in bank.top(min(DEBUG_TOP_FRAGMENTS, len(bank)))
                    ],
                ),
            ),
            pulse=PulseDebug(**pulse.to_dict()),
            summary_used=summary_used,
            summary_stored=memory.summary or None,
            metrics=MetricsDebug(
                surprisal=metrics.surprisal,
                entropy=metrics.entropy,
                score=resolution.score,
            ),
            state=state,
            meta=MetaDebug(
                meta_cap_stage=gate.meta_cap_stage,
                meta_cap=meta_cap_value(gate.meta_cap_stage),
                recent_meta_share=recent_meta_share(gate),
            ),
            params=ParamsDebug(**params.to_dict()),
            notes=notes,
        )
        LOGGER.debug("Turn %d of session %s resolved state=%.3f", turn, session_id, state)
        return TurnResult(session_id=session_id, turn=turn, assistant_text=assistant_text, debug=debug)

    @staticmethod
    def _metrics_payload(result: TurnResult) -> Dict[str, Any]:
        debug = result.debug
        return {
            "session_id": result.session_id,
            "turn": result.turn,
            "state": debug.state,
            "score": debug.metrics.score,
            "dim": debug.dim,
            "pulse_triggered": debug.pulse.triggered,
            "meta_cap_stage": debug.meta.meta_cap_stage,
            "max_output_tokens": debug.params.max_output_tokens,
            "temperature": debug.params.temperature,
            "fragments": debug.memory.fragments.total,
            "notes": len(debug.notes),
        }
