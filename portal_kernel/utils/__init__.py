"""Utility modules for the portal kernel."""

from portal_kernel.utils.cooldown import CooldownStore, InMemoryCooldownStore

__all__ = [
    "CooldownStore",
    "InMemoryCooldownStore",
]
