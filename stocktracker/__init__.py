"""
Stock Tracker: transaction import and portfolio analytics
"""

__version__ = "1.0.0"
