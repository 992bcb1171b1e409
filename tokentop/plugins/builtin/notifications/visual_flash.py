"""Visual flash notifications.

Briefly switches the terminal background color with ANSI escape codes:
red for critical, yellow for warning, green otherwise.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from tokentop.plugins.builtin.notifications.terminal_bell import is_alert_event
from tokentop.plugins.sdk import (
    ConfigField,
    NotificationContext,
    NotificationEvent,
    NotificationPlugin,
    NotificationSeverity,
    PluginMeta,
    PluginPermissions,
    SystemPermission,
)

RESET = "\x1b[0m"

SEVERITY_BACKGROUNDS = {
    NotificationSeverity.CRITICAL: "41",
    NotificationSeverity.WARNING: "43",
    NotificationSeverity.INFO: "42",
}


class VisualFlashNotification(NotificationPlugin):
    id = "visual-flash"
    name = "Visual Flash"
    version = "1.0.0"
    meta = PluginMeta(description="Visual screen flash using ANSI escape sequences")
    permissions = PluginPermissions(system=SystemPermission(notifications=True))

    config_schema = {
        "enabled": ConfigField(
            type="boolean",
            label="Enabled",
            default=True,
            description="Enable visual flash notifications",
        ),
        "duration": ConfigField(
            type="number",
            label="Flash duration (ms)",
            default=100,
            description="Flash duration in milliseconds",
            min=10,
            max=2000,
        ),
    }
    default_config = {"enabled": True, "duration": 100}

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def supports(self, event: NotificationEvent) -> bool:
        return is_alert_event(event)

    async def initialize(self, ctx: NotificationContext) -> None:
        ctx.logger.debug("Visual flash notification plugin initialized")

    async def _flash(self, code: str, duration_ms: float) -> None:
        self.stream.write(f"\x1b[{code}m")
        self.stream.flush()
        try:
            await asyncio.sleep(duration_ms / 1000)
        finally:
            self.stream.write(RESET)
            self.stream.flush()

    async def notify(self, ctx: NotificationContext, event: NotificationEvent) -> None:
        duration = float(ctx.config.get("duration", 100))
        await self._flash(SEVERITY_BACKGROUNDS[event.severity], duration)

    async def send_test(self, ctx: NotificationContext) -> bool:
        ctx.logger.info("Testing visual flash...")
        await self._flash("44", 100)
        return True


visual_flash = VisualFlashNotification()
