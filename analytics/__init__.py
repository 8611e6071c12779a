"""Analytics utilities for CharterDesk dashboards."""

# Re-export lightweight database helpers at the package level. Reporting
# helpers live in analytics.metrics so that importing the package does not
# pull in pandas/plotly.
from .db import (
    bootstrap_parameters,
    connection_scope,
    get_connection,
    get_parameter_value,
    list_parameters,
    set_parameter_value,
)

__all__ = [
    "bootstrap_parameters",
    "connection_scope",
    "get_connection",
    "get_parameter_value",
    "list_parameters",
    "set_parameter_value",
]
