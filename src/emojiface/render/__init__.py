"""Anchor resolution, glyphs, and overlay compositing."""
