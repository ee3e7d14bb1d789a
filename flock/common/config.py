"""Seed file loading for flock.

Handles loading and validation of the YAML seed file that describes
custom roles, tags and tag rules for a new deployment. System roles are
built in and never read from the file.

Example::

    roles:
      - name: worship_team
        description: Worship team coordinators
        permissions: [events:read, events:checkin, media:read, media:create]
    tags:
      - name: new-friend
        category: faith
    tag_rules:
      - name: Seekers
        tag: new-friend
        field: faith_status
        operator: equals
        value: seeker
        priority: 1
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class RoleSeed:
    """A custom role to create on first run."""

    name: str
    permissions: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class TagSeed:
    """A tag to create on first run."""

    name: str
    category: str = "general"
    color: str = "#3b82f6"
    description: str = ""


@dataclass
class TagRuleSeed:
    """A tag rule, referencing its tag by name."""

    name: str
    tag: str
    field: str
    operator: str = "equals"
    value: str = ""
    priority: int = 0
    condition_type: str = "field"
    status: str = "enabled"


@dataclass
class SeedConfig:
    """Top-level seed configuration."""

    roles: List[RoleSeed] = field(default_factory=list)
    tags: List[TagSeed] = field(default_factory=list)
    tag_rules: List[TagRuleSeed] = field(default_factory=list)


def parse_role_seed(role_dict: Dict[str, Any]) -> RoleSeed:
    """Parse a role entry.

    Args:
        role_dict: Role dictionary from the seed file

    Returns:
        RoleSeed instance
    """
    if not role_dict.get("name"):
        raise ValueError("Role entry is missing 'name'")
    return RoleSeed(
        name=str(role_dict["name"]),
        permissions=[str(p) for p in role_dict.get("permissions", [])],
        description=str(role_dict.get("description", "")),
    )


def parse_tag_seed(tag_dict: Dict[str, Any]) -> TagSeed:
    """Parse a tag entry.

    Args:
        tag_dict: Tag dictionary from the seed file

    Returns:
        TagSeed instance
    """
    if not tag_dict.get("name"):
        raise ValueError("Tag entry is missing 'name'")
    return TagSeed(
        name=str(tag_dict["name"]),
        category=str(tag_dict.get("category", "general")),
        color=str(tag_dict.get("color", "#3b82f6")),
        description=str(tag_dict.get("description", "")),
    )


def parse_tag_rule_seed(rule_dict: Dict[str, Any]) -> TagRuleSeed:
    """Parse a tag rule entry.

    Args:
        rule_dict: Rule dictionary from the seed file

    Returns:
        TagRuleSeed instance
    """
    for key in ("name", "tag", "field"):
        if not rule_dict.get(key):
            raise ValueError(f"Tag rule entry is missing '{key}'")
    return TagRuleSeed(
        name=str(rule_dict["name"]),
        tag=str(rule_dict["tag"]),
        field=str(rule_dict["field"]),
        operator=str(rule_dict.get("operator", "equals")),
        value=str(rule_dict.get("value", "")),
        priority=int(rule_dict.get("priority", 0)),
        condition_type=str(rule_dict.get("condition_type", "field")),
        status=str(rule_dict.get("status", "enabled")),
    )


def parse_config(config_dict: Dict[str, Any]) -> SeedConfig:
    """Parse the full seed dictionary.

    Args:
        config_dict: Full seed dictionary

    Returns:
        SeedConfig instance
    """
    return SeedConfig(
        roles=[parse_role_seed(r) for r in config_dict.get("roles") or []],
        tags=[parse_tag_seed(t) for t in config_dict.get("tags") or []],
        tag_rules=[parse_tag_rule_seed(r) for r in config_dict.get("tag_rules") or []],
    )


def load_config(config_path: str) -> Dict[str, Any]:
    """Load a seed file from YAML.

    Args:
        config_path: Path to the seed file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Seed file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Seed file root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_seed_config(config_path: Optional[str] = None) -> SeedConfig:
    """Load and parse the seed file into typed dataclasses.

    Args:
        config_path: Path to the seed file; defaults to settings.seed_file

    Returns:
        SeedConfig instance
    """
    if config_path is None:
        from flock.core.config import get_settings

        config_path = get_settings().seed_file
    return parse_config(load_config(config_path))
