"""Rich console rendering for command line results."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.audio import AudioFormat
from ..models.session import RecordingResult


def format_file_size(size: int) -> str:
    """Human readable byte count, e.g. 1.5 KB."""
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def format_elapsed(millis: float) -> str:
    """mm:ss display of a duration in milliseconds."""
    seconds = int(millis // 1000)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def volume_bar(level: float, width: int = 30) -> Text:
    """Volume bar for a mean analyser level on the 0-255 scale."""
    filled = int(round(max(0.0, min(255.0, level)) / 255 * width))
    return Text("█" * filled + "░" * (width - filled), style="green" if filled else "dim")


def format_table(audio_format: AudioFormat, size_bytes: int) -> Table:
    table = Table(show_header=False, box=None)
    table.add_row("Sample rate", f"{audio_format.sample_rate:,} Hz")
    table.add_row("Bit depth", f"{audio_format.bit_depth} bit")
    table.add_row("Channels", str(audio_format.channel_count))
    table.add_row("Size", format_file_size(size_bytes))
    return table


def show_transcript(console: Console, text: Optional[str], title: str = "Transcription",
                    language: Optional[str] = None) -> None:
    if not text:
        console.print("No speech was recognised in this recording.", style="yellow")
        return
    subtitle = f"language: {language}" if language else None
    console.print(Panel(text, title=title, subtitle=subtitle, border_style="blue"))


def show_recording_result(console: Console, result: RecordingResult, saved_to: Optional[str] = None) -> None:
    console.print(format_table(result.audio_format, len(result.container)))
    console.print(f"Duration: {result.duration_seconds:.1f}s in {result.total_fragments} fragments"
                  + (" (stopped on silence)" if result.stopped_by_silence else ""))
    if result.failed_chunks:
        console.print(f"{result.failed_chunks} chunks could not be streamed", style="yellow")
    if result.device_error is not None:
        console.print(f"Recording cut short: {result.device_error.detail}", style="yellow")
    if saved_to:
        console.print(f"Saved to {saved_to}")

    if result.error is not None:
        show_error(console, f"Transcription unavailable: {result.error.detail}. "
                            "The recording was kept locally and can be uploaded again.")
    elif result.transcript is not None:
        show_transcript(console, result.transcript.transcribed_text, language=result.transcript.detected_language)


def show_error(console: Console, message: str) -> None:
    console.print(Panel(message, title="Error", border_style="red"))
