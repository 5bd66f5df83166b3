"""Worker process supervision."""
