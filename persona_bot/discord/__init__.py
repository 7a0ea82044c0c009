from .client import PersonaDiscordBot

__all__ = ["PersonaDiscordBot"]
