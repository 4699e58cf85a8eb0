"""HTTP routers mounted by insights_query.main."""
