"""Persistence layer for warden."""
