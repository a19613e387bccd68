"""
PERCEPTION LAYER - Market Data Ingestion

The Perception Layer is responsible for:
1. Loading a price pair from CSV
2. Generating reproducible synthetic pairs for research and tests
3. Validating alignment, ordering and positivity of the prices

Components:
- MarketData: Aligned daily prices and returns of two assets
- CsvMarketDataProvider: Loads MarketData from a CSV file
- SyntheticPairProvider: Seeded simulated cointegrated pair

Usage:
    from perception import CsvMarketDataProvider

    data = CsvMarketDataProvider("data/btc_xrp.csv", "btc", "xrp").load()
    data.validate()
"""

from perception.market_data import (
    MarketData,
    CsvMarketDataProvider,
    SyntheticPairProvider,
)


__all__ = [
    'MarketData',
    'CsvMarketDataProvider',
    'SyntheticPairProvider',
]
