"""
This package defines the configuration models for the gated turn engine.

`GateConfig` holds every numeric and operational knob of the control loop and
`PromptTemplates` holds the text of every completion request it issues.
"""
from .gate import GateConfig
from .prompts import PromptTemplates

__all__ = ["GateConfig", "PromptTemplates"]
