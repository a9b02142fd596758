"""Read-only, three-tier cache in front of the TokkoBroker property API."""

__version__ = "0.1.0"
