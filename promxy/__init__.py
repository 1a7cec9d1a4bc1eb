"""Aggregating proxy primitives for Prometheus: fan-out clients, series merging, label filtering, querier adapters, configuration loading and access logging."""

__version__ = "0.1.0"