"""Outbound chat connectors.

Connectors are transport-only adapters that deliver notices to operators
over the Telegram Bot API and the Discord REST API.
"""

__all__ = ["notify"]
