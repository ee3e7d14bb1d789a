"""Applying tag rules to stored members.

TaggingService reads the current rules, tags and member rows, runs the
engine and writes the merged tag columns back. Writes to one member are
serialized with a per-member lock shared by every service in the
process; different members proceed in parallel.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from flock.common.logger import get_logger
from flock.core.errors import NotFoundError, UnavailableError
from flock.store.base import Table, TableService, utc_now_iso
from .engine import TagRule, TagRuleEngine, TagState, merge_tags
from .store import TagStore

logger = get_logger("tagging.service")

DELETED_MEMBER_STATUS = "deleted"

# Members hash onto a fixed pool of locks
LOCK_STRIPES = 256
_member_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]


def member_lock(member_id: str) -> threading.Lock:
    """Lock guarding tag writes for one member."""
    return _member_locks[hash(str(member_id)) % LOCK_STRIPES]


@dataclass
class TagUpdate:
    """Outcome of re-tagging one member."""

    member_id: str
    before: TagState
    after: TagState

    @property
    def changed(self) -> bool:
        return self.before != self.after

    @property
    def added(self) -> FrozenSet[str]:
        return self.after.tags - self.before.tags

    @property
    def removed(self) -> FrozenSet[str]:
        return self.before.tags - self.after.tags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "changed": self.changed,
            "tags": sorted(self.after.tags),
            "auto_tags": sorted(self.after.auto_tags),
            "manual_tags": sorted(self.after.manual_tags),
            "added": sorted(self.added),
            "removed": sorted(self.removed),
        }


@dataclass
class RecomputeSummary:
    """Outcome of re-tagging every member."""

    as_of: date
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.updated) + len(self.unchanged) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "total": self.total,
            "updated": sorted(self.updated),
            "unchanged": len(self.unchanged),
            "failed": dict(sorted(self.failed.items())),
        }


class TaggingService:
    """Runs the tag rule engine against members in the record store."""

    def __init__(
        self,
        tables: TableService,
        tag_store: Optional[TagStore] = None,
        *,
        workers: int = 4,
        engine: Optional[TagRuleEngine] = None,
    ):
        """
        Initialize the service.

        Args:
            tables: Record store holding members, tags and rules
            tag_store: Tag catalogue; built over tables when omitted
            workers: Thread pool size for recompute_all
            engine: Rule engine; a default TagRuleEngine when omitted
        """
        self.tables = tables
        self.tags = tag_store or TagStore(tables)
        self.workers = max(1, workers)
        self.engine = engine or TagRuleEngine()

    def _write_state(self, member_id: str, before: TagState, after: TagState) -> TagUpdate:
        update = TagUpdate(member_id=str(member_id), before=before, after=after)
        if update.changed:
            self.tables.update_by_id(
                Table.MEMBERS, member_id, {**after.to_row(), "updated_at": utc_now_iso()}
            )
            logger.info(
                f"Member {member_id} tags +{sorted(update.added)} -{sorted(update.removed)}"
            )
        return update

    def _apply(
        self,
        member_id: str,
        rules: List[TagRule],
        known_tag_ids: FrozenSet[str],
        as_of: date,
    ) -> TagUpdate:
        with member_lock(member_id):
            member = self.tables.get(Table.MEMBERS, member_id)
            before = TagState.from_row(member)
            derived = self.engine.evaluate(member, rules, as_of, known_tag_ids)
            return self._write_state(member_id, before, merge_tags(before, derived))

    def apply_to_member(self, member_id: str, as_of: Optional[date] = None) -> TagUpdate:
        """
        Re-evaluate one member against the current rules and save the result.

        Args:
            member_id: Member to re-tag
            as_of: Evaluation date for elapsed-day rules; defaults to today

        Returns:
            TagUpdate describing what changed

        Raises:
            NotFoundError: If the member doesn't exist
            UnavailableError: If the record store cannot be read or written
        """
        as_of = as_of or date.today()
        rules = self.tags.active_rules()
        known = self.tags.known_tag_ids()
        return self._apply(member_id, rules, known, as_of)

    def recompute_all(self, as_of: Optional[date] = None) -> RecomputeSummary:
        """
        Re-evaluate every non-deleted member.

        Rules and tags are read once for the whole batch. A member that
        fails is recorded in the summary and does not stop the rest.
        """
        as_of = as_of or date.today()
        rules = self.tags.active_rules()
        known = self.tags.known_tag_ids()
        member_ids = [
            str(row["id"]) for row in self.tables.list(Table.MEMBERS)
            if str(row.get("status") or "").strip().lower() != DELETED_MEMBER_STATUS
        ]
        summary = RecomputeSummary(as_of=as_of)
        logger.info(f"Recomputing tags for {len(member_ids)} members with {len(rules)} rules")

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {
                pool.submit(self._apply, member_id, rules, known, as_of): member_id
                for member_id in member_ids
            }
            for future in as_completed(futures):
                member_id = futures[future]
                try:
                    update = future.result()
                except (UnavailableError, NotFoundError) as e:
                    logger.error(f"Failed to re-tag member {member_id}: {e}")
                    summary.failed[member_id] = str(e)
                    continue
                if update.changed:
                    summary.updated.append(member_id)
                else:
                    summary.unchanged.append(member_id)

        logger.info(
            f"Recompute finished: {len(summary.updated)} updated, "
            f"{len(summary.unchanged)} unchanged, {len(summary.failed)} failed"
        )
        return summary

    # ------------------------------------------------------------------
    # Manual tags
    # ------------------------------------------------------------------

    def _edit_manual(
        self,
        member_id: str,
        edit: Callable[[FrozenSet[str]], Iterable[str]],
    ) -> TagUpdate:
        """Recompute a member's manual tags from the stored value under its lock."""
        with member_lock(member_id):
            before = TagState.from_row(self.tables.get(Table.MEMBERS, member_id))
            manual = frozenset(str(t).strip() for t in edit(before.manual) if str(t).strip())
            for tag_id in manual - before.manual:
                self.tags.get_tag(tag_id)
            after = TagState(
                tags=manual | before.auto_tags,
                auto_tags=before.auto_tags,
                manual_tags=manual,
            )
            return self._write_state(member_id, before, after)

    def set_manual_tags(self, member_id: str, tag_ids: Iterable[str]) -> TagUpdate:
        """Replace a member's human-applied tags.

        Rule-derived tags are left as they are. Tags the member already
        carries are kept even if they have since been deleted.

        Raises:
            NotFoundError: If the member or a newly added tag doesn't exist
        """
        tag_ids = list(tag_ids)
        return self._edit_manual(member_id, lambda current: tag_ids)

    def add_manual_tag(self, member_id: str, tag_id: str) -> TagUpdate:
        """Apply a tag to a member by hand."""
        return self._edit_manual(member_id, lambda current: current | {tag_id})

    def remove_manual_tag(self, member_id: str, tag_id: str) -> TagUpdate:
        """Remove a hand-applied tag. A rule may still derive it."""
        return self._edit_manual(member_id, lambda current: current - {tag_id})
