"""Service layer for notegraph."""
