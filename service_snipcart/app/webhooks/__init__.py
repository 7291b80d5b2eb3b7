"""
Snipcart webhook handling.
"""
