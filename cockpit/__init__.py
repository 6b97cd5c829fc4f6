"""Cockpit: run the pi coding agent inside an ephemeral Fly Sprite."""

__version__ = "0.1.0"
