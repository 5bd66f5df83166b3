"""Confirmation-gated change workflow."""
