"""TicketRelay — real-time support-ticket service.

Customers open tickets, chat with support staff inside a per-ticket room,
and every connected client sees ticket creation and status changes live.
"""

__version__ = "0.1.0"
