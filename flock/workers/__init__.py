"""Celery workers for flock."""

from flock.workers.tag_tasks import (
    celery_app,
    apply_member_tags,
    recompute_all_tags,
    enqueue_member_tags,
    enqueue_recompute,
)

__all__ = [
    "celery_app",
    "apply_member_tags",
    "recompute_all_tags",
    "enqueue_member_tags",
    "enqueue_recompute",
]
