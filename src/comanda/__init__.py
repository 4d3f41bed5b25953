"""Declarative multi-provider LLM workflow execution."""

__version__ = "0.4.0"
