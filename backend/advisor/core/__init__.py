"""
Core modules: configuration, logging, metrics, tracing and errors.
"""
