"""
EPG ingestion, caching, channel correlation and catchup URL resolution for IPTV clients.
"""

__version__ = "0.1.0"
