"""AI client implementations for the GDP back office."""

from gdp_backoffice.clients.gemini import GeminiAssistant

__all__ = [
    "GeminiAssistant",
]
