"""Model stream sources."""
from .base import ModelProvider, ModelRequest
from .scripted import ScriptedProvider, turn_events

__all__ = ["ModelProvider", "ModelRequest", "ScriptedProvider", "turn_events"]
