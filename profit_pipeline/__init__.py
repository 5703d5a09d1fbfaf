"""
Shopify Profit Pipeline

Mirrors a store's products, customers, orders, line items and refunds into a
tenant-scoped store, derives profit, customer LTV and product performance
metrics from the mirrored data, and removes a tenant's data on uninstall.
"""

__version__ = "1.0.0"
