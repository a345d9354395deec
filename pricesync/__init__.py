# pricesync/__init__.py
"""
Price acquisition and gap-filling engine.

Keeps instrument price and currency exchange rate time series complete at a
recency-dependent density, sourcing data from several rate-limited market
data providers.
"""

__version__ = "0.1.0"
