"""Persisted bot state (document store and its backends)."""

from fleetbot.state.store import COLLECTIONS, DocumentStore, adapter_for_url

__all__ = ["COLLECTIONS", "DocumentStore", "adapter_for_url"]
