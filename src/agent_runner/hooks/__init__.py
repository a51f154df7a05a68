"""SDK hook callbacks fired by the streaming backend."""

from agent_runner.hooks.archive import create_pre_compact_hook
from agent_runner.hooks.sanitize import create_sanitize_bash_hook, sanitize_preview

__all__ = [
    "create_pre_compact_hook",
    "create_sanitize_bash_hook",
    "sanitize_preview",
]
