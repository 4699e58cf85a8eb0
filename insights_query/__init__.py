"""
insights-query — profile-aware KQL query runtime for Application Insights.

Resolves a named profile, brokers an access token for it, and runs queries
through a TTL result cache. See executor.QueryExecutor for the entry point.
"""

__version__ = "0.4.0"
