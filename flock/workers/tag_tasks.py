"""Celery tasks for member tagging.

Provides async task processing for:
- Re-tagging one member after their record changes
- Re-tagging every member after a rule changes
- A nightly full recompute, so elapsed-day rules follow the calendar
"""

from datetime import date
from typing import Any, Dict, Optional
import logging

from celery import Celery, shared_task
from celery.schedules import crontab

from flock.core.config import get_settings
from flock.core.errors import UnavailableError
from flock.core.tagging.service import TaggingService
from flock.store import get_shared_table_service

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'flock',
    broker=settings.celery_broker_url,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'flock.workers.tag_tasks.apply_member_tags': {'queue': 'tags'},
        'flock.workers.tag_tasks.recompute_all_tags': {'queue': 'tags'},
    },
    task_default_queue='default',
    beat_schedule={
        'nightly-tag-recompute': {
            'task': 'flock.workers.tag_tasks.recompute_all_tags',
            'schedule': crontab(hour=2, minute=0),
        },
    },
)


def _tagging_service() -> TaggingService:
    return TaggingService(get_shared_table_service(), workers=get_settings().tag_workers)


def _parse_as_of(as_of: Optional[str]) -> Optional[date]:
    return date.fromisoformat(as_of) if as_of else None


def _backoff(task) -> int:
    # default_retry_delay, doubled on each retry
    return task.default_retry_delay * (2 ** task.request.retries)


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def apply_member_tags(self, member_id: str, as_of: Optional[str] = None) -> Dict[str, Any]:
    """
    Async task to re-tag a single member.

    Args:
        member_id: Member to re-evaluate
        as_of: Optional ISO evaluation date; defaults to today

    Returns:
        TagUpdate dictionary
    """
    try:
        update = _tagging_service().apply_to_member(member_id, _parse_as_of(as_of))
    except UnavailableError as e:
        logger.warning(f"Store unavailable while tagging member {member_id}: {e}")
        raise self.retry(exc=e, countdown=_backoff(self))

    logger.info(f"Tagging completed for member {member_id}: changed={update.changed}")
    return update.to_dict()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def recompute_all_tags(self, as_of: Optional[str] = None) -> Dict[str, Any]:
    """
    Async task to re-tag every member.

    Individual member failures are reported in the summary; only a
    failure to read the rule set or member list retries the task.

    Returns:
        RecomputeSummary dictionary
    """
    try:
        summary = _tagging_service().recompute_all(_parse_as_of(as_of))
    except UnavailableError as e:
        logger.warning(f"Store unavailable during tag recompute: {e}")
        raise self.retry(exc=e, countdown=_backoff(self))

    return summary.to_dict()


def enqueue_member_tags(
    member_id: str, service: Optional[TaggingService] = None
) -> Optional[Dict[str, Any]]:
    """Re-tag a member in the background, or inline when configured.

    Returns the TagUpdate dictionary when run inline, otherwise None.
    """
    if get_settings().tag_recompute_inline:
        return (service or _tagging_service()).apply_to_member(member_id).to_dict()
    apply_member_tags.delay(member_id)
    return None


def enqueue_recompute(service: Optional[TaggingService] = None) -> Optional[Dict[str, Any]]:
    """Re-tag every member in the background, or inline when configured."""
    if get_settings().tag_recompute_inline:
        return (service or _tagging_service()).recompute_all().to_dict()
    recompute_all_tags.delay()
    return None
