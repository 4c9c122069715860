"""
                Order Status Board

Restaurant order-status display: an admin dashboard for stores and
orders, and a public, auto-refreshing board that shows customers which
orders are being prepared and which are ready.
"""

__version__ = "1.0.0"
