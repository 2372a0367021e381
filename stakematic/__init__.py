"""Stake rebalancing control loop for delegated validator stake."""

__version__ = "0.3.0"
