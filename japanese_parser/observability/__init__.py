"""Logging, tracing and metrics for the Japanese parser."""
