"""Adapters that connect the core bridge to WhatsApp, Telegram and SQLite."""
