"""
Transport adapters package.

This package contains adapters between the pipeline's response envelopes
and transport-specific types.
"""

from __future__ import annotations
