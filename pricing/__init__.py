"""
Pricing collaborators: price oracle, holdings store, and portfolio valuation.
"""

from .holdings import Holding, HoldingsStore, HttpHoldingsStore, InMemoryHoldingsStore  # noqa: F401
from .oracle import HttpPriceOracle, PriceOracle, StaticPriceOracle  # noqa: F401
from .valuator import PortfolioValuation, PortfolioValuator  # noqa: F401
