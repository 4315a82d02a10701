"""Real-time chat backend: JWT auth, direct rooms and WebSocket messaging."""
