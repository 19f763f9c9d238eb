"""Live token streaming of generated tickets."""

from ticketforge.streaming.transport import StreamingTransport, TicketStream

__all__ = ["StreamingTransport", "TicketStream"]
