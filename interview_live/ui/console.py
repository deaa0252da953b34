"""Terminal rendering of a running interview session."""

import logging
from typing import List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.media import DeviceInfo
from ..models.session import SessionErrorInfo, SessionResult, SessionStatus
from ..models.transcript import Speaker, TranscriptEntry
from ..services.session_controller import SessionController

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    SessionStatus.INITIALIZING: ("⏳ CONNECTING", "bold blue"),
    SessionStatus.ACTIVE: ("🔴 LIVE", "bold red"),
    SessionStatus.PAUSED: ("⏸️  PAUSED", "bold yellow"),
    SessionStatus.COMPLETED: ("✅ COMPLETED", "bold green"),
    SessionStatus.ERROR: ("❌ ERROR", "bold red"),
}


def format_remaining(milliseconds: float) -> str:
    seconds = int(milliseconds // 1000)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class SessionScreen:
    """Live transcript and session status for the terminal."""

    def __init__(self, controller: SessionController, console: Optional[Console] = None, max_lines: int = 12):
        self.controller = controller
        self.console = console or Console()
        self.max_lines = max_lines
        self.last_error: Optional[SessionErrorInfo] = None

    def on_error(self, info: SessionErrorInfo) -> None:
        self.last_error = info

    def _header(self) -> Text:
        status = self.controller.status or SessionStatus.INITIALIZING
        label, style = STATUS_STYLES[status]
        header = Text(label, style=style)
        header.append(f"   ⏱  {format_remaining(self.controller.time_remaining_ms())} remaining")
        header.append(f"   {self.controller.progress_percentage():.0f}%")

        session = self.controller.session
        if session is not None and session.connection_status.connected:
            quality = session.connection_status.quality
            latency = session.connection_status.latency_ms
            header.append(f"   📶 {quality.value if quality else 'unknown'}")
            if latency is not None:
                header.append(f" ({latency:.0f}ms)")

        metrics = self.controller.audio_quality
        if metrics is not None:
            level_bar = "█" * int(metrics.input_level * 20)
            header.append(f"\nAudio: [{level_bar:<20}] quality {metrics.quality_score:.2f}")
        return header

    def _transcript_table(self, entries: List[TranscriptEntry]) -> Table:
        table = Table(show_header=False, box=None, expand=True)
        table.add_column("time", style="dim", width=10)
        table.add_column("speaker", width=9)
        table.add_column("text", ratio=1)
        for entry in entries[-self.max_lines:]:
            speaker_style = "cyan" if entry.speaker is Speaker.AI else "magenta"
            text_style = None if entry.is_final else "italic dim"
            table.add_row(
                entry.timestamp.strftime("%H:%M:%S"),
                Text(entry.speaker.value.upper(), style=speaker_style),
                Text(entry.text, style=text_style),
            )
        return table

    def render(self) -> Panel:
        parts = [self._header(), self._transcript_table(self.controller.transcript)]
        if self.last_error is not None:
            style = "yellow" if self.last_error.recoverable else "red"
            parts.append(Text(f"⚠️  {self.last_error.user_message}", style=style))
            for hint in self.last_error.guidance[1:]:
                parts.append(Text(f"   - {hint}", style="dim"))
        title = f"Interview {self.controller.session.session_id}" if self.controller.session else "Interview"
        return Panel(Group(*parts), title=title, subtitle="Ctrl-C to finish")

    def print_result(self, result: SessionResult) -> None:
        self.console.print()
        self.console.print(f"✅ Session {result.session_id} complete "
                           f"({result.completion_reason.value}, {result.duration_ms / 1000:.0f}s)",
                           style="bold green")
        self.console.print(f"📝 {len(result.transcript)} transcript entries")
        for line in result.transcript_text[-5:]:
            self.console.print(f"   {line}")


def print_devices(devices: List[DeviceInfo], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Capture devices")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Rate", justify="right")
    table.add_column("Channels", justify="right")
    for device in devices:
        table.add_row(
            device.device_id,
            device.kind.value,
            device.label,
            str(device.default_sample_rate or "-"),
            str(device.max_input_channels or "-"),
        )
    console.print(table)
