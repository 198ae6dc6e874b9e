"""
Dispatch Core API Module.

Provides a REST facade over the dispatcher.
"""

from dispatch_core.api.server import build_dispatcher, create_app, main

__all__ = ["build_dispatcher", "create_app", "main"]
