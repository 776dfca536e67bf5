"""Nightly Aloha Insight Dashboard scrape into the restaurant KPI fact tables."""

__version__ = "0.4.0"
