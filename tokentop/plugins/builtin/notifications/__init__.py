"""Builtin notification channels."""

from tokentop.plugins.builtin.notifications.terminal_bell import terminal_bell
from tokentop.plugins.builtin.notifications.visual_flash import visual_flash

PLUGINS = [terminal_bell, visual_flash]

__all__ = ["PLUGINS", "terminal_bell", "visual_flash"]
