"""Builtin color themes."""

from tokentop.plugins.builtin.themes.catppuccin_mocha import catppuccin_mocha
from tokentop.plugins.builtin.themes.gruvbox_dark import gruvbox_dark
from tokentop.plugins.builtin.themes.solarized_light import solarized_light

PLUGINS = [catppuccin_mocha, gruvbox_dark, solarized_light]

__all__ = ["PLUGINS", "catppuccin_mocha", "gruvbox_dark", "solarized_light"]
