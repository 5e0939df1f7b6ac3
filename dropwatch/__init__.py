"""Dropwatch - scheduled discovery of files arriving on remote drop locations."""

__app_name__ = "dropwatch"
__version__ = "0.1.0"
