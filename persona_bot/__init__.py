"""Discord persona bot: reply decisions, relationship memory and LLM replies."""

__version__ = "0.1.0"
