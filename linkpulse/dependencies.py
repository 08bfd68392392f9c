"""FastAPI dependency providers for objects living on app.state."""

from fastapi import Request

from linkpulse.core.aggregator import ClickAggregator
from linkpulse.core.cache import MappingCache


def get_aggregator(request: Request) -> ClickAggregator:
    return request.app.state.aggregator


def get_mapping_cache(request: Request) -> MappingCache:
    return request.app.state.mapping_cache
