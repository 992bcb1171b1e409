"""Builtin provider plugins.

Provider integrations are distributed as remote plugin packages; none ship
in the core package.
"""

from tokentop.plugins.sdk import ProviderPlugin

PLUGINS: list[ProviderPlugin] = []
