"""
Address allowlists consulted by ``allowlist`` rules.
"""
