"""
SDK for health credits.

Provides metered access to paid generation capabilities.
"""

from .openai_client import GenerationResult, MeteredOpenAI

__all__ = ["GenerationResult", "MeteredOpenAI"]
