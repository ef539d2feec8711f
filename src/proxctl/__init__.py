"""proxctl — layered configuration control for a local proxy engine."""

__version__ = "0.1.0"
