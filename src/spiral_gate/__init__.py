"""
spiral-gate: an adaptive control loop that decides, per conversational turn,
how much compute a chat completion receives and which memory it sees.

The public API is exposed lazily through `__getattr__` so that importing the
package does not pull in FastAPI, LangChain or Redis until they are needed.
"""

from importlib import import_module
from typing import Any, Dict, Tuple

__all__ = [
    "GateConfig",
    "PromptTemplates",
    "GatedTurnEngine",
    "TurnResult",
    "SessionStore",
    "LangChainCompletionClient",
    "ScriptedCompletionClient",
    "create_app",
]


_ATTR_MODULE_MAP: Dict[str, Tuple[str, str]] = {
    "GateConfig": ("config", "GateConfig"),
    "PromptTemplates": ("config", "PromptTemplates"),
    "GatedTurnEngine": ("engine", "GatedTurnEngine"),
    "TurnResult": ("engine", "TurnResult"),
    "SessionStore": ("session_store", "SessionStore"),
    "LangChainCompletionClient": ("completion", "LangChainCompletionClient"),
    "ScriptedCompletionClient": ("mock", "ScriptedCompletionClient"),
    "create_app": ("app", "create_app"),
}


def __getattr__(name: str) -> Any:
    """
    Lazily loads attributes from submodules of the `spiral_gate` package.

    Args:
        name: The name of the attribute to load.

    Returns:
        The requested attribute.

    Raises:
        AttributeError: If the requested attribute is not part of the
                        package's public API.
    """
    try:
        module_name, attribute = _ATTR_MODULE_MAP[name]
    except KeyError as exc:  # pragma: no cover - guard against typos
        raise AttributeError(f"module 'spiral_gate' has no attribute {name!r}") from exc

    module = import_module(f".{module_name}", __name__)
    value = getattr(module, attribute)
    globals()[name] = value  # Cache for future lookups
    return value
