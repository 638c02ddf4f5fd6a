"""Crisis room domain and request schemas."""
