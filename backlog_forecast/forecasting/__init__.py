"""Backlog completion forecasting.

This package provides:
- Weekly throughput aggregation from completed work items
- A seeded bootstrap Monte Carlo simulator (P50/P80/P95, histogram, burn-down)
- What-if scenarios and a stateless service facade returning structured outcomes

Each call is a pure function of its inputs and seed; nothing is cached
between calls.
"""
