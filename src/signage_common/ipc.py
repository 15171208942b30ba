"""
Change-feed messaging over ZeroMQ.
The document service publishes a DOCUMENT_CHANGED message whenever a
document is written; players subscribe and re-fetch the documents they watch.
"""

import json
import time
from enum import Enum
from typing import Any, Dict, Optional

import zmq

from signage_common.logger import setup_logger

logger = setup_logger(__name__)


class MessageType(Enum):
    """Types of messages carried on the change feed."""
    DOCUMENT_CHANGED = "document"   # A document was written; data = {"key": ...}


class Message:
    """Standard message format for the change feed."""

    def __init__(
        self,
        msg_type: MessageType,
        data: Dict[str, Any],
        sender: str,
        timestamp: Optional[float] = None
    ):
        """
        Create a message.

        Args:
            msg_type: Type of message
            data: Message payload
            sender: Name of the publishing service
            timestamp: Unix timestamp (auto-generated if None)
        """
        self.msg_type = msg_type
        self.data = data
        self.sender = sender
        self.timestamp = timestamp or time.time()

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps({
            "type": self.msg_type.value,
            "data": self.data,
            "sender": self.sender,
            "timestamp": self.timestamp
        })

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        """Deserialize message from JSON string."""
        obj = json.loads(json_str)
        return cls(
            msg_type=MessageType(obj["type"]),
            data=obj.get("data") or {},
            sender=obj.get("sender", ""),
            timestamp=obj.get("timestamp")
        )

    @classmethod
    def from_wire(cls, raw: str) -> Optional["Message"]:
        """
        Parse a '<topic> <json>' frame as sent by MessagePublisher.

        Returns:
            Message, or None when the frame has no payload
        """
        parts = raw.split(' ', 1)
        if len(parts) != 2:
            return None
        return cls.from_json(parts[1])

    def __repr__(self) -> str:
        """String representation."""
        return f"Message(type={self.msg_type.value}, sender={self.sender}, data={self.data})"


class MessagePublisher:
    """Publishes change notifications (PUB socket)."""

    def __init__(self, endpoint: str, service_name: str, bind: bool = True):
        """
        Initialize publisher.

        Args:
            endpoint: ZeroMQ endpoint, e.g. 'tcp://*:5557'
            service_name: Name of this service
            bind: Bind the endpoint (True) or connect to it (False)
        """
        self.endpoint = endpoint
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.PUB)
        if bind:
            self.socket.bind(endpoint)
        else:
            self.socket.connect(endpoint)

        # Give subscribers time to connect
        time.sleep(0.1)

        logger.info("Publisher started: %s on %s", service_name, endpoint)

    def publish(self, msg_type: MessageType, data: Dict[str, Any]) -> None:
        """
        Publish a message.

        Args:
            msg_type: Type of message
            data: Message payload
        """
        message = Message(msg_type, data, self.service_name)
        self.socket.send_string(f"{msg_type.value} {message.to_json()}")
        logger.debug("Published: %s", message)

    def document_changed(self, key: str) -> None:
        """Announce that the document stored under key was written."""
        self.publish(MessageType.DOCUMENT_CHANGED, {"key": key})

    def close(self) -> None:
        """Close the publisher."""
        self.socket.close(linger=0)
        self.context.term()
        logger.info("Publisher closed: %s", self.service_name)


class MessageSubscriber:
    """Subscribes to change notifications (SUB socket)."""

    def __init__(self, endpoint: str, service_name: str):
        """
        Initialize subscriber.

        Args:
            endpoint: Publisher endpoint to connect to, e.g. 'tcp://cms:5557'
            service_name: Name of this service
        """
        self.endpoint = endpoint
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.SUB)
        self.socket.connect(endpoint)

        logger.info("Subscriber started: %s connected to %s", service_name, endpoint)

    def subscribe_to(self, msg_type: MessageType) -> None:
        """
        Subscribe to a specific message type.

        Args:
            msg_type: Message type to subscribe to
        """
        self.socket.setsockopt_string(zmq.SUBSCRIBE, msg_type.value)
        logger.debug("Subscribed to: %s", msg_type.value)

    def receive(self, timeout_ms: int = 1000) -> Optional[Message]:
        """
        Receive a message (blocking with timeout).

        Args:
            timeout_ms: Timeout in milliseconds

        Returns:
            Message or None if timeout or unreadable frame
        """
        self.socket.setsockopt(zmq.RCVTIMEO, timeout_ms)

        try:
            raw_message = self.socket.recv_string()
        except zmq.Again:
            return None

        try:
            message = Message.from_wire(raw_message)
        except (ValueError, KeyError) as e:
            logger.warning("Dropping malformed change-feed frame: %s", e)
            return None

        if message is not None:
            logger.debug("Received: %s", message)
        return message

    def close(self) -> None:
        """Close the subscriber."""
        self.socket.close(linger=0)
        self.context.term()
        logger.info("Subscriber closed: %s", self.service_name)
