"""Core domain package for deadwatch.

Core contains classification, dispatch, cursor and scheduling logic without
any transport, Discord or storage-specific code, keeping the ingestion
pipeline portable.
"""
