"""
Step delivery: delivery-method strategies and step item construction.
"""
