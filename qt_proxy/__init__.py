"""
QT Proxy - Daily devotional extraction service.

This package provides functionality to:
- Fetch the daily devotional page from Duranno
- Resolve the page's character encoding (UTF-8 or legacy Korean)
- Extract the scripture reference, subtitle and verse fragment
- Serve the result as JSON or an HTML snippet over HTTP
"""

__version__ = "1.0.0"
__author__ = "QT Proxy Team"
