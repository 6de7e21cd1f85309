"""Microphone capture delivering fixed-length float fragments."""

import pyaudio
import logging
from threading import Thread, Event
from typing import Optional, Callable
from datetime import datetime
import numpy as np

from ..errors import DeviceAccessError
from ..models.audio import AudioFormat, AudioStats, SampleBuffer

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[SampleBuffer], None]
ErrorCallback = Callable[[DeviceAccessError], None]


class AudioCapture:
    """Continuous microphone capture on a background thread."""

    def __init__(self, fragment_millis: int = 250, input_device_index: Optional[int] = None):
        """Initialize audio capture.

        Args:
            fragment_millis: Length of each delivered fragment in milliseconds
            input_device_index: PyAudio input device, None for the system default
        """
        self.fragment_millis = fragment_millis
        self.input_device_index = input_device_index

        self.audio_format: Optional[AudioFormat] = None
        self.frames_per_fragment = 0
        self.callback: Optional[FragmentCallback] = None
        self.on_error: Optional[ErrorCallback] = None

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_fragments = 0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    def start_recording(self, audio_format: AudioFormat, callback: FragmentCallback,
                        on_error: Optional[ErrorCallback] = None) -> None:
        """Open the input stream and start delivering fragments.

        The stream is opened on the calling thread so a missing device or a
        denied permission is reported here rather than lost in the reader.

        Args:
            audio_format: Sample rate and channel count to capture with
            callback: Called from the reader thread with each fragment
            on_error: Called from the reader thread if the stream fails after
                recording has started

        Raises:
            DeviceAccessError: If the input stream cannot be opened
        """
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        self.audio_format = audio_format
        self.callback = callback
        self.on_error = on_error
        self.frames_per_fragment = max(1, audio_format.sample_rate * self.fragment_millis // 1000)
        self.__open_audio_stream()

        logger.info("Starting audio recording")
        self.stop_event.clear()
        self.start_time = datetime.now()
        self.total_fragments = 0

        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()
        self.is_recording = True

    def stop_recording(self) -> None:
        """Stop recording and clean up resources."""
        if not self.is_recording:
            logger.debug("No recording in progress")
            return

        logger.info("Stopping audio recording")
        self.stop_event.set()

        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

        self.is_recording = False
        logger.info(f"Recording stopped. Total fragments: {self.total_fragments}")

    def __open_audio_stream(self) -> None:
        try:
            self.pyaudio_instance = pyaudio.PyAudio()
            self.stream = self.pyaudio_instance.open(
                format=pyaudio.paFloat32,
                channels=self.audio_format.channel_count,
                rate=self.audio_format.sample_rate,
                input=True,
                input_device_index=self.input_device_index,
                frames_per_buffer=self.frames_per_fragment,
                stream_callback=None
            )
        except (OSError, ValueError) as e:
            self.__release()
            raise DeviceAccessError(f"Could not open microphone: {e}") from e

        logger.info(f"Audio stream opened: {self.audio_format.sample_rate}Hz, "
                    f"{self.audio_format.channel_count} channels, {self.frames_per_fragment} frames/fragment")

    def __read_fragment(self) -> SampleBuffer:
        data = self.stream.read(self.frames_per_fragment, exception_on_overflow=False)
        self.total_fragments += 1
        samples = np.frombuffer(data, dtype=np.float32)
        return SampleBuffer(samples, self.audio_format.channel_count)

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        try:
            while not self.stop_event.is_set():
                fragment = self.__read_fragment()
                self.callback(fragment)
        except Exception as e:
            logger.error(f"Audio capture failed: {e}", exc_info=True)
            if self.on_error is not None and not self.stop_event.is_set():
                self.on_error(DeviceAccessError(f"Microphone stopped delivering audio: {e}"))
        finally:
            self.__release()

    def __release(self) -> None:
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except OSError as e:
                logger.debug(f"Error closing audio stream: {e}")
            self.stream = None
        if self.pyaudio_instance:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.audio_format.sample_rate if self.audio_format else 0,
            channels=self.audio_format.channel_count if self.audio_format else 0,
            frames_per_fragment=self.frames_per_fragment,
            total_fragments=self.total_fragments,
        )

    def __del__(self):
        """Ensure resources are cleaned up on deletion."""
        if self.is_recording:
            self.stop_recording()
