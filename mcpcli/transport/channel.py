"""Message channel over a single bidirectional byte stream.

A channel wraps a buffered binary reader and writer (a child's stdout/stdin,
or the two halves of ``socket.makefile``). The buffered reader reassembles
arbitrary chunking into whole lines, so a logical message is never merged
with or split across its neighbours.

The channel is not self-healing: after any ``TransportError`` the owner must
discard it.
"""

import logging
import socket
from typing import Any, BinaryIO, Dict, Optional

from mcpcli.errors import ChannelClosed, TransportError
from mcpcli.transport.protocol import MAX_MESSAGE_SIZE, decode_message, encode_message

logger = logging.getLogger(__name__)


class MessageChannel:
    """
    Framed JSON message exchange.

    Thread safety: ``send`` and ``receive`` may be called from different
    threads, but each direction must have a single user at a time.
    """

    def __init__(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        max_message_size: Optional[int] = MAX_MESSAGE_SIZE,
        name: str = "channel",
    ):
        """
        Args:
            reader: Buffered binary stream to read lines from
            writer: Binary stream to write lines to
            max_message_size: Largest accepted message in bytes (None = no limit)
            name: Label used in log and error messages
        """
        self._reader = reader
        self._writer = writer
        self.max_message_size = max_message_size
        self.name = name
        self._closed = False
        self._socket: Optional[socket.socket] = None

    @classmethod
    def from_socket(
        cls,
        sock: socket.socket,
        max_message_size: Optional[int] = MAX_MESSAGE_SIZE,
        name: str = "socket",
    ) -> "MessageChannel":
        """Wrap a connected stream socket."""
        channel = cls(
            sock.makefile("rb"),
            sock.makefile("wb"),
            max_message_size=max_message_size,
            name=name,
        )
        channel._socket = sock
        return channel

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: Dict[str, Any]) -> None:
        """
        Write one complete message and flush it.

        Raises:
            TransportError: On serialization or I/O failure
        """
        if self._closed:
            raise ChannelClosed(f"{self.name} is closed")
        data = encode_message(message)
        if self.max_message_size is not None and len(data) > self.max_message_size:
            raise TransportError(
                f"Outgoing message too large: {len(data)} bytes "
                f"(limit {self.max_message_size})"
            )
        try:
            self._writer.write(data)
            self._writer.flush()
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to write to {self.name}", cause=e) from e

    def receive(self) -> Dict[str, Any]:
        """
        Block until one complete message is available and return it.

        Raises:
            ChannelClosed: On end of stream
            TransportError: On I/O failure, oversize or malformed message
        """
        while True:
            if self._closed:
                raise ChannelClosed(f"{self.name} is closed")
            try:
                if self.max_message_size is None:
                    line = self._reader.readline()
                else:
                    line = self._reader.readline(self.max_message_size + 1)
            except (OSError, ValueError) as e:
                raise TransportError(f"Failed to read from {self.name}", cause=e) from e

            if not line:
                raise ChannelClosed(f"End of stream on {self.name}")
            if self.max_message_size is not None and len(line) > self.max_message_size:
                raise TransportError(
                    f"Incoming message exceeds {self.max_message_size} bytes on {self.name}"
                )
            if not line.endswith(b"\n"):
                # EOF in the middle of a message
                raise TransportError(f"Truncated message on {self.name}")
            if not line.strip():
                continue
            return decode_message(line)

    def close(self) -> None:
        """Close both directions. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for stream in (self._writer, self._reader):
            try:
                stream.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing {self.name}: {e}")
        if self._socket is not None:
            self._socket.close()
