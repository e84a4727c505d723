"""Viewport rendering from a tile pyramid."""

from .compositor import ViewportCompositor, render_viewport

__all__ = ["ViewportCompositor", "render_viewport"]
