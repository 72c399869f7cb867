"""
AI vendor connectors.

One adapter per vendor behind a shared connector pipeline.
"""

from .pipeline import ConnectorPipeline
from .registry import ADAPTERS, create_connector, resolve_adapter

__all__ = ["ADAPTERS", "ConnectorPipeline", "create_connector", "resolve_adapter"]
