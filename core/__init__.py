"""Core: statistics, invariants and simulation events."""
