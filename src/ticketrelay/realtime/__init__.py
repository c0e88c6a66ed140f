"""Real-time infrastructure — in-process rooms + WebSocket.

Learn: Events flow in one direction per hop:
1. Services → RoomBroadcaster (after the database commit)
2. RoomBroadcaster → each Connection's outbound queue → WebSocket

Everything lives in one process; there is no cross-process fan-out.
"""
