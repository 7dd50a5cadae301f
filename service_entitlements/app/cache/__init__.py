"""
Cache package for Entitlements Service.

Provides the single-flight TTL cache that stores on-chain lookups
(balances, token owners) shared by all rule evaluations.
"""
