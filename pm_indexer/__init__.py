"""Prediction market indexer: sync, embed, and search Polymarket and Kalshi markets."""

__version__ = "0.1.0"
