"""notebridge: local model gateway and semantic index for a notes workspace."""

__version__ = "1.0.0"
