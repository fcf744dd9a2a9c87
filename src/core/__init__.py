"""Core domain package for the bridge.

Core contains event classification, rendering, media policy and correlation
logic without any WhatsApp, Telegram or storage-specific code, keeping the
translation engine portable and testable with fake clients.
"""
