"""Real-time fan-out over WebSocket connections.

Components, leaves first:
    - connection: Connection (socket + verified user id).
    - rooms: RoomManager (room id -> subscribed connections).
    - broadcaster: EventBroadcaster (fire-and-forget fan-out).
    - presence: PresenceRegistry over a swappable PresenceBackend.
    - typing_coordinator: TypingCoordinator (relay only, no state).
    - gate: ConnectionGate (handshake auth, admission, teardown).
    - router: the /ws endpoint and the GET /presence views.

All state here is single-process. Running several instances needs a shared
presence backend and a shared room broker.
"""
