"""Relay yande.re popular posts to a chat room, once per image."""

__version__ = "0.1.0"
