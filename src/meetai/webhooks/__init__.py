"""Inbound provider webhooks -- signature verification, event parsing, and dispatch."""
