"""FastAPI server exposing streamed sandbox operations."""
