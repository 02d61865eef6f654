"""Core domain package for rocketnotify.

Core contains unread aggregation, session handling and the polling loop
without any Telegram, HTTP or storage-specific code, keeping the business
logic portable.
"""
