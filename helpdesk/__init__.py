"""Support-ticket lifecycle engine."""
