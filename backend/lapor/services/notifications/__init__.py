"""Notification fan-out consumer."""

from .fanout import NotificationFanout, resolve_channels

__all__ = ['NotificationFanout', 'resolve_channels']
