"""Docker logging plugin that forwards container output to Telegram."""

__all__ = ["options", "config", "logging", "client", "forwarder", "driver", "api"]
__version__ = "1.0.0"
