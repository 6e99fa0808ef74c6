"""Data models for notegraph."""
