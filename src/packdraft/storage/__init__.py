"""DuckDB-backed row store: events, pools, packs, picks, resolution queue."""
