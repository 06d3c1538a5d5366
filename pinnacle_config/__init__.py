"""
Pinnacle Configuration Client

Configuration and control client for the Pinnacle Wayland compositor.
Runs Python configuration scripts and exposes an async API over the
compositor's config socket.
"""

__version__ = "0.4.0"
