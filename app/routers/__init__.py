from . import health, messaging

__all__ = [
    "health",
    "messaging"
]
