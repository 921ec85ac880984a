"""Outfit image generation core: job polling, orchestration and grid compositing."""

__version__ = "1.0.0"
