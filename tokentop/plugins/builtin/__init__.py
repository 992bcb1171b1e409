"""Plugins shipped with tokentop.

One module (or package) per plugin type. Each exposes a ``PLUGINS`` list
that :meth:`tokentop.plugins.registry.PluginRegistry.load_builtin_plugins`
registers as official.
"""
