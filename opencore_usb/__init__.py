"""
Create OpenCore USB drives and restore OpenCore onto EFI system partitions.
"""

__version__ = "0.1.0"
