"""Built-in plugins registered by every workspace."""
