"""FruitBowl storefront orders and subscriptions service."""

__version__ = "1.0.0"
