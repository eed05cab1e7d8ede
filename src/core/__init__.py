"""Core domain package for telemirror.

Core contains admission rules, deduplication and the release queue without any Telegram
or storage-specific code, keeping the business logic portable.
"""
