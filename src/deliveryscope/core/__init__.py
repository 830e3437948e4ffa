"""Core domain package for deliveryscope.

Core contains normalization, scoring, matching, and reporting logic without
any Telegram or storage-specific code, keeping the reconciliation portable.
"""
