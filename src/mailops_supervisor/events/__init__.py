"""Observer events and channel."""
