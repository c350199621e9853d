"""Market venue adapters."""

from packdraft.venues.base import MarketVenue, PoolFilter, VenueResolution

__all__ = ["MarketVenue", "PoolFilter", "VenueResolution"]
