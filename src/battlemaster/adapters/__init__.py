"""Adapters that bind the core ports to Jetstream, ATProto and SQLite."""
