"""Loader type registry.

Static name -> class mapping used to build a connector's loader from its
config. New providers are added here; connectors and the writer never
branch on the loader type.
"""

from typing import Any, Dict, List, Optional, Type

from connectors.loaders.base import DataLoader
from connectors.loaders.google_api import GoogleApiDataLoader
from connectors.loaders.plaid import PlaidDataLoader
from connectors.loaders.sql import SqlDataLoader
from core.exceptions import UnknownLoaderError
from schemas.loader import LoaderInfo

LOADER_REGISTRY: Dict[str, Type[DataLoader]] = {
    "sql": SqlDataLoader,
    "google_api": GoogleApiDataLoader,
    "plaid": PlaidDataLoader,
}


def get_loader_class(loader_type: str) -> Type[DataLoader]:
    loader_class = LOADER_REGISTRY.get(loader_type)
    if loader_class is None:
        raise UnknownLoaderError(
            f"Unknown data loader type: {loader_type}. "
            f"Available loaders: {', '.join(get_available_data_loaders())}",
            context={"loader_type": loader_type}
        )
    return loader_class


def create_data_loader(loader_type: str, config: Optional[Dict[str, Any]] = None) -> DataLoader:
    """Instantiate the registered loader; its constructor validates ``config``."""
    return get_loader_class(loader_type)(config or {})


def get_available_data_loaders() -> List[str]:
    return sorted(LOADER_REGISTRY)


def get_available_data_loader_infos(include_hidden: bool = False) -> List[LoaderInfo]:
    """Registered loaders with their example config, hidden ones excluded by default."""
    return [
        LoaderInfo(name=name, example_config=dict(cls.example_config), is_hidden=cls.is_hidden)
        for name, cls in sorted(LOADER_REGISTRY.items())
        if include_hidden or not cls.is_hidden
    ]
