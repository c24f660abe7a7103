"""Task queue backends, the worker loop and the outbox relay."""
