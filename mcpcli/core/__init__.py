"""Core layer: configuration, template expansion, and the client router."""
