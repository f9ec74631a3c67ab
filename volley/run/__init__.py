"""Run coordination, status aggregation and reporting."""
