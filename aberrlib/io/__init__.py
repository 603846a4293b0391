"""Diagnostic output."""

from .diagnostics import DiagnosticWriter, write_image

__all__ = ["DiagnosticWriter", "write_image"]
