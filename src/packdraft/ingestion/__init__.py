"""Background jobs that pull venue data into the store: pool discovery and price sync."""
