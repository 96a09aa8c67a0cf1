"""Exception types raised by the search engine."""


class SearchError(Exception):
    """Base class for search engine errors."""


class ConfigurationError(SearchError, ValueError):
    """Raised when a component is configured with unknown or invalid options."""


class InvalidQueryError(SearchError, ValueError):
    """Raised when a query is structurally invalid."""
