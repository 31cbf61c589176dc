"""
Runtime: event contexts, lifecycle pipeline, instances, cache and models.
"""

from .context import EventContext, Principal
from .events import EventPipeline, operation_event
from .instance import Instance, InstanceBuilder
from .cache import CacheCoordinator, build_cache_key
from .model import Model

__all__ = [
    "CacheCoordinator",
    "EventContext",
    "EventPipeline",
    "Instance",
    "InstanceBuilder",
    "Model",
    "Principal",
    "build_cache_key",
    "operation_event",
]
