"""Streaming core: chunking, cancellation, emission, broadcast and text assembly."""
