"""Backing services: Docker Engine, Redis and the resource registry."""
