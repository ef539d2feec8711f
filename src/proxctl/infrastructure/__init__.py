"""Infrastructure layer — store, sandbox, persistence, and collaborators.

Depends on the domain layer and third-party libs (Jinja2, SQLAlchemy).
Only the workspace reaches into services, lazily, to run the enhancement
pipeline; nothing here imports from commands or output.
"""
