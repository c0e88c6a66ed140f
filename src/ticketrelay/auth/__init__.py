"""Authentication and authorization.

Learn: Users register with username/password and log in for a bearer JWT.
The token carries {sub, username, role} so routes and the WebSocket
handler can identify the caller without a database round-trip.
"""
