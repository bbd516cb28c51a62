"""Chat sessions: models, storage and service."""
