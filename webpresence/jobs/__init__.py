"""Persistent job queue, payload schemas, dispatcher and processing passes."""
