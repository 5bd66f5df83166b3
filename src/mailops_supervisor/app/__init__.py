"""Host application session."""
