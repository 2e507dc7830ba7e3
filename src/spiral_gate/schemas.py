"""
This module defines the Pydantic models exchanged at the turn API boundary.

`TurnRequest` and `TurnResponse` carry the wire names used by the browser
client (``sessionId``, ``userText``, ``assistantText``). `TurnDebug` and its
nested models describe everything the engine decided during a turn: the
effective and original probe, memory budgets, the fragment-bank snapshot, the
pulse outcome, raw metrics, the final state, governance and generation
parameters, plus free-text notes.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TurnRequest(BaseModel):
    """
    Payload of ``POST /api/step``.

    Both fields are optional at the schema level so that a missing value is
    reported with the API's own error body instead of a generic validation
    response.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_text: Optional[str] = Field(default=None, alias="userText")

    @field_validator("user_text", mode="before")
    @classmethod
    def _stringify_scalar_text(cls, value: Any) -> Any:
        # JSON scalars are accepted as text the way a browser would render them.
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        return value


class FragmentView(BaseModel):
    id: str
    turn: int
    dim: Optional[str] = None
    salience: float
    text: str


class FragmentAddView(BaseModel):
    added: bool
    merged: bool
    id: str
    salience: float
    text: str


class FragmentsDebug(BaseModel):
    total: int
    decay_factor: float
    top_salience: float
    last_add: Optional[FragmentAddView] = None
    injected: List[FragmentView] = Field(default_factory=list)
    top: List[FragmentView] = Field(default_factory=list)


class MemoryDebug(BaseModel):
    ctx_keep_msgs: int
    summary_chars: int
    attn_items: int
    frag_items: int
    summary_update_interval: int
    summary_update_max_tokens: int
    fragments: FragmentsDebug


class PulseDebug(BaseModel):
    triggered: bool = False
    stagnation_detected: bool = False
    repeating_dim: Optional[str] = None
    candidates_text: Optional[str] = None
    picked: Optional[int] = None
    selected_probe: Optional[str] = None


class MetricsDebug(BaseModel):
    surprisal: Optional[float] = None
    entropy: Optional[float] = None
    score: Optional[float] = None


class MetaDebug(BaseModel):
    meta_cap_stage: int
    meta_cap: Optional[float] = None
    recent_meta_share: Optional[float] = None


class ParamsDebug(BaseModel):
    max_output_tokens: int
    temperature: float
    context_keep_msgs: int


class TurnDebug(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    probe_text: Optional[str] = Field(default=None, alias="probeText")
    probe_text_original: Optional[str] = Field(default=None, alias="probeText_original")
    dim: Optional[str] = None
    focus: Optional[str] = None
    next: Optional[str] = None
    memory: MemoryDebug
    pulse: PulseDebug
    summary_used: Optional[str] = None
    summary_stored: Optional[str] = None
    metrics: MetricsDebug
    state: float
    meta: MetaDebug
    params: ParamsDebug
    notes: List[str] = Field(default_factory=list)


class TurnResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_text: str = Field(alias="assistantText")
    debug: TurnDebug

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ErrorResponse(BaseModel):
    error: str


class SessionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    turn: int
    state: float
    meta_cap_stage: int
    last_pulse_turn: Optional[int] = None
    fragments: int
    attention_log: int
    summary: Optional[str] = None
    history_messages: int
