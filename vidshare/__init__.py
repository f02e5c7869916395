"""Vidshare API: process bootstrap and request pipeline."""

__version__ = "0.1.0"
