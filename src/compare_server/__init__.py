"""
compare_server: persistence layer of the model comparison backend.

Entry point for callers is ``compare_server.models.get_data_access()``.
"""

__version__ = "0.1.0"
