"""Audio publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.events import FragmentEvent, SessionEvent

logger = logging.getLogger(__name__)

FRAGMENT_TOPIC = "audio.fragment"
SESSION_TOPIC = "session.events"


class AudioPublisher:
    """Publishes fragment and session events using pubsub.pub."""

    def __init__(self, fragment_topic: str = FRAGMENT_TOPIC, session_topic: str = SESSION_TOPIC):
        """Initialize audio publisher.

        Args:
            fragment_topic: Pub/sub topic for captured fragments
            session_topic: Pub/sub topic for session lifecycle events
        """
        self.fragment_topic = fragment_topic
        self.session_topic = session_topic
        logger.debug(f"AudioPublisher initialized with topics: {fragment_topic}, {session_topic}")

    def publish_fragment(self, fragment_event: FragmentEvent) -> None:
        """Publish a captured fragment.

        Args:
            fragment_event: FragmentEvent to publish
        """
        pub.sendMessage(self.fragment_topic, event=fragment_event)

    def publish_session_event(self, session_event: SessionEvent) -> None:
        """Publish a session lifecycle event.

        Args:
            session_event: SessionEvent to publish
        """
        pub.sendMessage(self.session_topic, event=session_event)
        logger.debug(f"Published session event: {session_event.event_type}")
