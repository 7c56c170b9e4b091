"""Adapters layer for Record-Guard.

Adapters implement the ports defined in the domain layer. The storage
adapters persist patients and their encoded clinical fields.
"""
