from .opensearch import OpenSearchStore, map_transport_error

__all__ = ["OpenSearchStore", "map_transport_error"]
