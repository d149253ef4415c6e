"""Ticket chat orchestrator: LLM tool-calling over a ticketing backend with background jobs."""

__version__ = "1.0.0"
