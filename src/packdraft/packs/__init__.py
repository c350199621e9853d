"""Player-facing pack operations."""
