"""Record store seeding for flock.

Creates the system roles and, optionally, the custom roles, tags and tag
rules listed in the seed file. Seeding is idempotent: anything that
already exists (matched by name) is left untouched, so re-running never
overwrites permissions an admin has since edited.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from flock.common.config import SeedConfig
from flock.common.logger import get_logger
from flock.core.rbac.models import Role
from flock.core.rbac.roles import SYSTEM_ROLES
from flock.core.rbac.store import RoleStore
from flock.core.tagging.engine import RuleStatus
from flock.core.tagging.store import Tag, TagStore

logger = get_logger("db.seed")


@dataclass
class SeedResult:
    """Names of the records a seeding run created."""

    roles: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    tag_rules: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"roles": self.roles, "tags": self.tags, "tag_rules": self.tag_rules}


def seed_system_roles(store: RoleStore, result: Optional[SeedResult] = None) -> Dict[str, Role]:
    """
    Create the system roles that don't exist yet.

    Args:
        store: Role store to write to
        result: Optional SeedResult to record created names in

    Returns:
        Dict mapping system role name to Role
    """
    roles = {}

    for name, definition in SYSTEM_ROLES.items():
        existing = store.get_by_name(name)
        if existing:
            roles[name] = existing
            continue

        roles[name] = store.create(
            name,
            definition["permissions"],
            definition["description"],
            is_system_role=True,
        )
        if result is not None:
            result.roles.append(name)

    return roles


def seed_from_config(
    role_store: RoleStore,
    tag_store: TagStore,
    seed_config: Optional[SeedConfig] = None,
) -> SeedResult:
    """
    Seed system roles plus the roles, tags and rules of a seed file.

    Tag rules reference their tag by name; a rule is skipped when a rule
    with the same name already targets that tag.

    Raises:
        InvalidPermissionError: If a seeded role lists an unknown permission
        ValueError: If a tag rule references an unknown tag or is malformed
    """
    result = SeedResult()
    seed_system_roles(role_store, result)
    if seed_config is None:
        return result

    for role_seed in seed_config.roles:
        if role_store.get_by_name(role_seed.name):
            continue
        role_store.create(role_seed.name, role_seed.permissions, role_seed.description)
        result.roles.append(role_seed.name)

    tags_by_name: Dict[str, Tag] = {t.name.lower(): t for t in tag_store.list_tags()}
    for tag_seed in seed_config.tags:
        if tag_seed.name.lower() in tags_by_name:
            continue
        tag = tag_store.create_tag(
            tag_seed.name, tag_seed.category, tag_seed.color, tag_seed.description
        )
        tags_by_name[tag.name.lower()] = tag
        result.tags.append(tag.name)

    existing_rules = {(r.tag_id, r.name) for r in tag_store.list_rules()}
    for rule_seed in seed_config.tag_rules:
        tag = tags_by_name.get(rule_seed.tag.lower())
        if tag is None:
            raise ValueError(f"Tag rule '{rule_seed.name}' references unknown tag '{rule_seed.tag}'")
        if (tag.id, rule_seed.name) in existing_rules:
            continue
        tag_store.create_rule(
            rule_seed.name,
            tag.id,
            rule_seed.field,
            rule_seed.operator,
            rule_seed.value,
            priority=rule_seed.priority,
            condition_type=rule_seed.condition_type,
            enabled=rule_seed.status.strip().lower() != RuleStatus.DISABLED.value,
        )
        result.tag_rules.append(rule_seed.name)

    logger.info(
        f"Seeded {len(result.roles)} roles, {len(result.tags)} tags, "
        f"{len(result.tag_rules)} tag rules"
    )
    return result
