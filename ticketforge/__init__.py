"""TicketForge: asynchronous AI ticket generation with caching, model fallback and streaming."""

__version__ = "0.4.0"
