"""Environment, settings and resilience helpers."""
