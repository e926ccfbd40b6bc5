"""
Tiered multi-model financial advice.

Routes user questions across fast and top-tier language models according to
query complexity, subscription tier and remaining quota.
"""

__version__ = "0.1.0"
