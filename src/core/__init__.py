"""Core domain package for msglogger.

Core contains recording policy, tokenization, dedup and ingestion logic
without any OneBot or SQLite-specific code, keeping the business logic
portable.
"""
