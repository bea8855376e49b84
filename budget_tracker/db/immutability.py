"""
ORM-level append-only enforcement for the activity log tables.

Every fund family writes its history into its own activity table. Rows are
inserted once and never touched again: ``before_update`` and ``before_delete``
listeners on each activity model abort the flush with ``ImmutableRecordError``
before any SQL reaches the database. Bulk ``update()``/``delete()`` statements
bypass mapper events and are not used against these tables.
"""
import logging

from sqlalchemy import event

from budget_tracker.core.exceptions import ImmutableRecordError

logger = logging.getLogger(__name__)


def _reject_activity_update(mapper, connection, target):
    logger.error(
        "Blocked update of activity row %s in %s", target.id, mapper.local_table.name
    )
    raise ImmutableRecordError(mapper.local_table.name, "UPDATE")


def _reject_activity_delete(mapper, connection, target):
    logger.error(
        "Blocked delete of activity row %s in %s", target.id, mapper.local_table.name
    )
    raise ImmutableRecordError(mapper.local_table.name, "DELETE")


def register_immutability_listeners():
    """Attach the append-only guards. Safe to call more than once."""
    from budget_tracker.models.activity_log import ACTIVITY_MODELS

    for model in ACTIVITY_MODELS:
        if not event.contains(model, "before_update", _reject_activity_update):
            event.listen(model, "before_update", _reject_activity_update)
        if not event.contains(model, "before_delete", _reject_activity_delete):
            event.listen(model, "before_delete", _reject_activity_delete)
