"""HomeKeeper notification scheduling and engagement engine."""

__version__ = "0.1.0"
