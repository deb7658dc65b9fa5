"""Configuration module for the farm ledger."""

from farm_ledger.config.catalog import ItemCatalog, load_item_catalog
from farm_ledger.config.logging import configure_logging, get_logger, log_run
from farm_ledger.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "ItemCatalog",
    "configure_logging",
    "get_logger",
    "get_settings",
    "load_item_catalog",
    "log_run",
]
