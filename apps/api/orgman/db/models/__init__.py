"""SQLAlchemy ORM models."""

from orgman.db.models.jobs import Job

__all__ = ["Job"]
