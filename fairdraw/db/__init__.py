"""Database plumbing: engine/session factory, metadata and helpers."""
