"""warehouse_allocation package

Stateless putaway and picking heuristics over an injected bin snapshot:
`PutawayLocator` scores candidate bins for an incoming item and
`PickingRouteBuilder` sequences bin visits for a batch of picking items.

"""

__all__ = [
    "models",
    "errors",
    "config",
    "distance",
    "scoring",
    "bin_catalog",
    "putaway",
    "picking",
]
