"""HTTP API for deploywatch."""
