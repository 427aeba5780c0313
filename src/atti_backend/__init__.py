"""Backend for the lifecycle of determinazioni dirigenziali."""

__version__ = "0.3.0"
