"""
Core package: settings, logging, error types, requester identity and
rate limiting shared by the API and service layers.
"""
