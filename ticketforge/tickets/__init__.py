"""Ticket prompts, routing and document post-processing."""

from ticketforge.tickets.documents import (
    PARTIAL_RESULT_NOTE,
    ensure_responsible,
    is_partial,
    mark_partial,
    responsible_footer,
)
from ticketforge.tickets.prompts import (
    SYSTEM_PROMPT,
    build_ticket_prompt,
    determine_responsible,
)

__all__ = [
    "PARTIAL_RESULT_NOTE",
    "SYSTEM_PROMPT",
    "build_ticket_prompt",
    "determine_responsible",
    "ensure_responsible",
    "is_partial",
    "mark_partial",
    "responsible_footer",
]
