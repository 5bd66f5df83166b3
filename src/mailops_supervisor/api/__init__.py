"""HTTP client and schemas for the worker control API."""
