"""SQLAlchemy models package.

All ORM classes must be registered deterministically so mapper configuration
and `Base.metadata.create_all` cannot depend on import order.
"""

from eventstore.models import (  # noqa: F401
    canonical_event,
    ingest_checkpoint,
    quarantine_record,
)
