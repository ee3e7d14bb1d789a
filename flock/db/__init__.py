"""Record store seeding."""

from .seed import SeedResult, seed_from_config, seed_system_roles

__all__ = ["SeedResult", "seed_from_config", "seed_system_roles"]
