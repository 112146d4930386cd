"""Application services."""

from .datasource import (
    Datasource,
    configure_instance_manager,
    get_instance_manager,
    load_configured_datasources,
    new_datasource,
    reset_instance_manager,
)

__all__ = [
    "Datasource",
    "configure_instance_manager",
    "get_instance_manager",
    "load_configured_datasources",
    "new_datasource",
    "reset_instance_manager",
]
