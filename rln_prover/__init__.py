"""Epoch tracking, rate-limit counters, registration handling, settings and metrics for an RLN prover."""

__version__ = "0.1.0"