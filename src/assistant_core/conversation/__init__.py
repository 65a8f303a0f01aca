"""Conversation loop, turn events and job queue."""
