"""Secret masking for logs."""
