"""ChatPilot HTTP server (FastAPI)."""
