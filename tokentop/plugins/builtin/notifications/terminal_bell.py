"""Terminal bell notifications.

Writes the BEL character to the terminal: once for warnings, three times
(200 ms apart) for critical events. Events below ``min_severity`` are
ignored.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from tokentop.plugins.sdk import (
    ConfigField,
    NotificationContext,
    NotificationEvent,
    NotificationEventType,
    NotificationPlugin,
    NotificationSeverity,
    PluginMeta,
    PluginPermissions,
    SystemPermission,
)

BEL = "\x07"
BELL_INTERVAL_SECONDS = 0.2


def is_alert_event(event: NotificationEvent) -> bool:
    """Budget, provider and plugin-crash events; shared by the builtin channels."""
    return (
        event.category in ("budget", "provider")
        or event.type == NotificationEventType.PLUGIN_CRASHED
    )


class TerminalBellNotification(NotificationPlugin):
    id = "terminal-bell"
    name = "Terminal Bell"
    version = "1.0.0"
    meta = PluginMeta(description="Simple terminal bell (BEL character) for alerts")
    permissions = PluginPermissions(system=SystemPermission(notifications=True))

    config_schema = {
        "enabled": ConfigField(
            type="boolean",
            label="Enabled",
            default=True,
            description="Enable terminal bell notifications",
        ),
        "min_severity": ConfigField(
            type="select",
            label="Minimum severity",
            default="warning",
            description="Only ring the bell for alerts at this severity or higher.",
            options=(("info", "Info"), ("warning", "Warning"), ("critical", "Critical")),
        ),
    }
    default_config = {"enabled": True, "min_severity": "warning"}

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def supports(self, event: NotificationEvent) -> bool:
        return is_alert_event(event)

    async def initialize(self, ctx: NotificationContext) -> None:
        ctx.logger.debug("Terminal bell notification plugin initialized")

    async def notify(self, ctx: NotificationContext, event: NotificationEvent) -> None:
        min_severity = NotificationSeverity(ctx.config.get("min_severity", "warning"))
        if event.severity.rank < min_severity.rank:
            return

        count = 3 if event.severity is NotificationSeverity.CRITICAL else 1
        for i in range(count):
            if ctx.signal.aborted:
                return
            self.stream.write(BEL)
            self.stream.flush()
            if i < count - 1:
                await asyncio.sleep(BELL_INTERVAL_SECONDS)

    async def send_test(self, ctx: NotificationContext) -> bool:
        ctx.logger.info("Testing terminal bell...")
        self.stream.write(BEL)
        self.stream.flush()
        return True


terminal_bell = TerminalBellNotification()
