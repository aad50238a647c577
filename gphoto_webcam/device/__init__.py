"""
Virtual video device management.
"""

from .manager import DeviceManager

__all__ = ['DeviceManager']
