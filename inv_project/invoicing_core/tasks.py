import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def flag_critical_audit_entries():
    """Open review rows for new critical audit entries; returns how many."""
    # import lazily to avoid circular imports at module import time
    from .services.audit_helper import flag_critical_entries

    flagged = flag_critical_entries()
    if flagged:
        logger.info("Flagged %s critical audit entries for review", len(flagged))
    return len(flagged)
