"""Main application entry point for VoiceStream."""

import sys
import asyncio
import argparse
import logging
import signal
from pathlib import Path

from rich.console import Console
from rich.live import Live
from rich.text import Text

from . import __version__
from .audio.audio_pub import AudioPublisher
from .audio.codec import extract_payload_bytes, read_format
from .audio.level_meter import LevelMeter
from .audio.silence import SilenceMonitor
from .client.memory import MemoryRecordingClient
from .client.streaming import StreamingClient
from .client.upload import FileTranscriptionClient
from .config import VoiceStreamConfig
from .errors import VoiceStreamError
from .models.audio import Container
from .models.session import SessionStatus
from .services.capture_session import CaptureSession
from .storage.recording_store import RecordingStore
from .ui.console import (
    format_elapsed,
    format_table,
    show_error,
    show_recording_result,
    show_transcript,
    volume_bar,
)

logger = logging.getLogger(__name__)

REFRESH_SECONDS = 0.1


def setup_logging(config: VoiceStreamConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'logs/voicestream.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"VoiceStream {__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_session(config: VoiceStreamConfig, client: StreamingClient, device=None) -> CaptureSession:
    """Wire a capture session from configuration.

    Args:
        config: Loaded configuration
        client: Streaming client the session talks to
        device: Capture device; a PyAudio AudioCapture when omitted
    """
    if device is None:
        # Imported here so the other commands work without PortAudio
        from .audio.capture import AudioCapture
        device = AudioCapture(
            fragment_millis=int(config.get('audio.fragment_millis')),
            input_device_index=config.get('audio.input_device_index'),
        )

    silence_monitor = SilenceMonitor(
        silence_threshold_millis=float(config.get('silence.threshold_millis')),
        amplitude_threshold=float(config.get('silence.amplitude_threshold')),
        poll_interval_millis=float(config.get('silence.poll_interval_millis')),
    )
    return CaptureSession(
        device,
        client,
        audio_format=config.get_audio_format(),
        silence_monitor=silence_monitor,
        level_meter=LevelMeter(),
        publisher=AudioPublisher(),
        max_duration_millis=float(config.get('session.max_duration_seconds')) * 1000,
        drain_timeout_seconds=float(config.get('session.drain_timeout_seconds')),
    )


def streaming_client(config: VoiceStreamConfig) -> StreamingClient:
    return StreamingClient(
        base_url=config.get('server.base_url'),
        timeout_seconds=float(config.get('server.timeout_seconds')),
        chunk_timeout_seconds=float(config.get('server.chunk_timeout_seconds')),
    )


def _status_line(session: CaptureSession) -> Text:
    line = Text(f"● {format_elapsed(session.elapsed_millis)} ", style="red")
    line.append_text(volume_bar(session.level_meter.mean_level()))
    line.append(f"  {len(session.fragments)} fragments")
    if session.failed_chunks:
        line.append(f", {session.failed_chunks} not streamed", style="yellow")
    return line


async def record(config: VoiceStreamConfig, console: Console) -> int:
    """Stream one live recording until silence or Ctrl+C."""
    async with streaming_client(config) as client:
        session = build_session(config, client)
        await session.start()

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, lambda: asyncio.ensure_future(session.stop()))
        except NotImplementedError:
            logger.debug("Signal handlers unsupported on this platform")

        console.print("Recording... speak now. Stops after a pause, or press Ctrl+C.")
        result_task = asyncio.ensure_future(session.wait_for_result())
        try:
            with Live(_status_line(session), console=console, transient=True) as live:
                while not result_task.done():
                    live.update(_status_line(session))
                    await asyncio.wait({result_task}, timeout=REFRESH_SECONDS)
            result = result_task.result()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                pass
            if session.status is not SessionStatus.IDLE:
                await session.abort()

    if result is None:
        console.print("Recording aborted.", style="yellow")
        return 1

    store = RecordingStore(config.get_output_directory())
    path = store.save_result(result)
    show_recording_result(console, result, saved_to=str(path))
    return 0


async def save(config: VoiceStreamConfig, console: Console, filename: str, delete: bool) -> int:
    """One-shot: store a WAV payload on the service, transcribe it, optionally delete it."""
    container = Container(Path(filename).read_bytes())
    audio_format = read_format(container)
    payload = extract_payload_bytes(container)
    console.print(format_table(audio_format, len(payload)))

    async with MemoryRecordingClient(config.get('server.base_url'),
                                     float(config.get('server.timeout_seconds'))) as client:
        saved = await client.save(payload, audio_format)
        console.print(f"Saved as recording {saved.id}")
        if saved.is_silent:
            console.print("The service reports this recording as silent.", style="yellow")

        try:
            transcript = await client.transcribe(saved.id)
            show_transcript(console, transcript.transcribed_text, language=transcript.detected_language)
            if transcript.ai_response:
                show_transcript(console, transcript.ai_response, title="Response")
        finally:
            if delete:
                await client.delete(saved.id)
                console.print(f"Deleted recording {saved.id}")
    return 0


async def upload(config: VoiceStreamConfig, console: Console, filename: str) -> int:
    """Transcribe a WAV file through the multipart upload endpoint."""
    path = Path(filename)
    container = Container(path.read_bytes())
    async with FileTranscriptionClient(config.get('server.base_url'),
                                       float(config.get('server.timeout_seconds'))) as client:
        transcript = await client.transcribe_file(container, filename=path.name)

    console.print(f"{path.name}: {transcript.sample_rate:,} Hz, {transcript.bit_depth} bit, "
                  f"{transcript.channel_count} ch")
    show_transcript(console, transcript.transcribed_text, language=transcript.detected_language)
    return 0


async def health(config: VoiceStreamConfig, console: Console) -> int:
    async with FileTranscriptionClient(config.get('server.base_url'),
                                       float(config.get('server.timeout_seconds'))) as client:
        report = await client.health()
    console.print(f"{report.get('service') or config.get('server.base_url')}: {report['status']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicestream",
        description="VoiceStream - Voice capture with streaming transcription",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"VoiceStream v{__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("record", help="Record from the microphone and stream for transcription")

    save_parser = commands.add_parser("save", help="Store a WAV file on the service and transcribe it")
    save_parser.add_argument("file", help="WAV file to send")
    save_parser.add_argument("--delete", action="store_true", help="Delete the stored recording afterwards")

    upload_parser = commands.add_parser("upload", help="Transcribe a WAV file by upload")
    upload_parser.add_argument("file", help="WAV file to upload")

    commands.add_parser("health", help="Check the transcription service")
    return parser


def run_command(args: argparse.Namespace, config: VoiceStreamConfig, console: Console) -> int:
    if args.command == "record":
        return asyncio.run(record(config, console))
    if args.command == "save":
        return asyncio.run(save(config, console, args.file, args.delete))
    if args.command == "upload":
        return asyncio.run(upload(config, console, args.file))
    return asyncio.run(health(config, console))


def main() -> None:
    """Main entry point for VoiceStream."""
    args = build_parser().parse_args()
    console = Console()

    try:
        config = VoiceStreamConfig(args.config)
    except (FileNotFoundError, ValueError) as e:
        show_error(console, str(e))
        sys.exit(2)

    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))

    try:
        sys.exit(run_command(args, config, console))
    except KeyboardInterrupt:
        console.print("\nGoodbye!")
    except VoiceStreamError as e:
        logger.error(f"{args.command} failed: {e.detail}")
        show_error(console, e.detail)
        sys.exit(1)
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        show_error(console, str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
