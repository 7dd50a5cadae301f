"""
Bearer credentials issued after a successful SIWE login.
"""
