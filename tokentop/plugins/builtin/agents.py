"""Builtin agent plugins.

Agent adapters are distributed as remote plugin packages; none ship in the
core package.
"""

from tokentop.plugins.sdk import AgentPlugin

PLUGINS: list[AgentPlugin] = []
