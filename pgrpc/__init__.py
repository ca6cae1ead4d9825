"""Build Rust type definitions from PostgreSQL type and task-queue metadata."""

__version__ = "0.1.0"