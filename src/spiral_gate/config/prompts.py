"""
Configurable prompt templates for every completion request issued by the gated
turn engine.

The probe, the exploration pulse, the verifier, the main response and the
running-summary refresh each have their own system prompt. Keeping them in one
dataclass makes them easy to override from configuration without touching the
control loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, Optional


_PROBE_GRAMMAR = (
    "DIM: <RISK|NOVELTY|GOAL|UNCERTAINTY|OPPORTUNITY|META>\n"
    "FOCUS: <short noun phrase>\n"
    "NEXT: <one next observation or action>\n"
    "WHY: <one short sentence>\n"
)


@dataclass(slots=True)
class PromptTemplates:
    """
    Centralized storage for all prompt templates used by the turn engine.

    Templates support variable substitution using Python string formatting
    with `{variable_name}` syntax; `get_prompt` resolves either a plain
    template attribute or one of the builder methods below.
    """

    # ========== Probe ==========

    probe_system_prompt: str = field(default=(
        "You are the ATTENTION PROBE of the agent.\n"
        "Task: from the user's latest message, pick exactly ONE attention dimension and a concrete focus.\n"
        "Output MUST be exactly 4 lines, in this exact order:\n"
        + _PROBE_GRAMMAR
        + "Constraints:\n"
        "- Keep wording plain. No metaphors, no rare words, no invented terms.\n"
        "- Keep FOCUS and NEXT concrete and short.\n"
        "- Do not add any extra lines."
    ))

    # ========== Main response ==========

    main_system_prompt: str = field(default=(
        "You are the MAIN agent response.\n"
        "state={state:.3f} (0=low compute, 1=high compute).\n"
        "Scale depth smoothly with state (no hard tiers):\n"
        "- Lower state: very short, just the answer / action.\n"
        "- Mid state: normal explanation + one next step.\n"
        "- Higher state: deeper reasoning, tradeoffs, and a short plan, but stay bounded.\n"
        "Always stay concrete. Avoid infinite elaboration."
    ))

    summary_injection: str = "SUMMARY: {summary}"

    attention_log_header: str = "ATTENTION_LOG (latest last):"
    attention_log_footer: str = "Use this only as a lightweight memory of what has been salient."

    fragments_header: str = (
        "MEMORY_FRAGMENTS (salience-ranked; use ONLY if relevant; ignore if not needed):"
    )

    # ========== Exploration pulse ==========

    exploration_system_prompt: str = field(default=(
        "You are the EXPLORATION PULSE.\n"
        "The agent is stuck repeating the same attention dimension.\n"
        "Generate EXACTLY 3 alternative attention probes.\n"
        "Each candidate MUST be exactly 4 lines, in this exact order:\n"
        + _PROBE_GRAMMAR
        + "Constraints:\n"
        "- Use plain wording. No metaphors, no rare words, no invented terms.\n"
        "- Each candidate DIM must be DIFFERENT from the current DIM.\n"
        "- Current DIM is: {current_dim}\n"
        "- Separate candidates with ONE blank line. No extra commentary."
    ))

    exploration_request: str = field(default=(
        "User message:\n{user_text}\n\nOriginal probe (current frame):\n{original_probe}"
    ))

    verifier_system_prompt: str = field(default=(
        "You are the VERIFIER.\n"
        "Choose the single best candidate among 3 alternatives.\n"
        "Criteria:\n"
        "- Must be helpful and concrete for the user's latest message.\n"
        "- Avoid META unless it is clearly the best practical move.\n"
        "- If RISK is plausible, prefer it.\n"
        "Output MUST be exactly one line:\n"
        "PICK: <1|2|3>"
    ))

    verifier_request: str = field(default=(
        "User message:\n{user_text}\n\nOriginal probe:\n{original_probe}\n\nCandidates:\n{candidates}"
    ))

    # ========== Running summary ==========

    summary_system_prompt: str = field(default=(
        "You update a running one-line conversation summary.\n"
        "Output MUST be exactly one line.\n"
        "Keep it short: 140 characters or fewer.\n"
        "Focus on: the user's goal, constraints, and current plan. Avoid fluff."
    ))

    summary_request: str = field(default=(
        "Previous summary: {previous}\n"
        "Latest exchange:\n"
        "User: {user_text}\n"
        "Assistant: {assistant_text}\n"
        "Write the updated one-line summary:"
    ))

    def get_prompt(self, template_name: str, **kwargs: Any) -> str:
        """
        Get a formatted prompt template with variable substitution.

        Args:
            template_name: The name of the template attribute or builder method.
            **kwargs: Variables to substitute in the template.

        Returns:
            The formatted prompt string.
        """
        template = getattr(self, template_name, None)
        if template is None:
            raise ValueError(f"Unknown prompt template: {template_name}")

        if callable(template):
            return template(**kwargs)

        return template.format(**kwargs)

    def frame_prompt(
        self,
        *,
        dim: Optional[str],
        focus: Optional[str],
        next: Optional[str],
        pulse: bool,
    ) -> str:
        """Render the current attention frame injected before the main call."""
        lines = [
            "Current attention frame (use this to guide your response):",
            f"DIM={dim or ''}",
            f"FOCUS={focus or ''}",
            f"NEXT={next or ''}",
        ]
        if pulse:
            lines.append(
                "ExplorationPulse=ON (this frame was selected to break stagnation; "
                "keep it bounded and practical)."
            )
        else:
            lines.append("ExplorationPulse=OFF")
        return "\n".join(lines)

    def attention_log_prompt(self, *, entries: Iterable[Any], max_items: int) -> str:
        """Render the tail of the attention log, latest entry last."""
        tail = list(entries)[-max_items:] if max_items > 0 else []
        lines = [self.attention_log_header]
        for index, entry in enumerate(tail, start=1):
            suffix = f" → {entry.next}" if entry.next else ""
            lines.append(f"{index}. [t{entry.turn}] {entry.dim} / {entry.focus}{suffix}")
        lines.append(self.attention_log_footer)
        return "\n".join(lines)

    def fragments_prompt(self, *, fragments: Iterable[Any]) -> str:
        """Render the injected memory fragments; empty when nothing was picked."""
        lines = [f"- {fragment.text}" for fragment in fragments]
        if not lines:
            return ""
        return "\n".join([self.fragments_header, *lines])

    def to_dict(self) -> Dict[str, str]:
        """Convert all templates to a dictionary for serialization."""
        return {item.name: getattr(self, item.name) for item in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptTemplates":
        """Create a `PromptTemplates` instance from a dictionary."""
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})
