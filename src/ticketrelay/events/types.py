"""Event type constants.

Learn: Centralizing event names as constants prevents typos and makes it
easy to discover the whole event-channel vocabulary. The camelCase names
are the wire protocol clients already speak.
"""

# ─── Server → clients ────────────────────────────────────

NEW_TICKET = "newTicket"          # global
TICKET_UPDATED = "ticketUpdated"  # global
NEW_MESSAGE = "newMessage"        # ticket room
ERROR = "error"                   # originating connection only
PONG = "pong"

# ─── Client → server ─────────────────────────────────────

JOIN_TICKET_ROOM = "joinTicketRoom"
SEND_MESSAGE = "sendMessage"
PING = "ping"
