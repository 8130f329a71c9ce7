"""dimcache - Two-tier cache for targeting lookup tables

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Stale-but-valid data beats no data
- Never let a cache failure take down the host

dimcache keeps lookup tables (countries, devices, browsers, ...) fetched from an
upstream API warm in memory and on disk, refreshing them shortly before they
expire.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
