"""
                Orderflow Delivery Core

Order lifecycle for a restaurant delivery platform: the order state machine,
its inventory and tracking ledgers, and live fan-out of every change to the
kitchen, customers, drivers and admins.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
