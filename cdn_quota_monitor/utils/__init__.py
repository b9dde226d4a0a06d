"""Shared helpers for the CDN quota monitor."""
