"""Per-tenant disk quota accounting and enforcement for the CDN."""

__version__ = "1.0.0"
