"""Scheduling, state table and notification services."""
