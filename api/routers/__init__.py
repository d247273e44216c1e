"""
Routers per API winelist-processor.

Moduli:
- wine_lists: Elaborazione carta vini (POST /wine-lists, progress, result, cancel)
- wines: Vini salvati (GET /wines, GET /wines/{id}, POST /wines/analyze)
"""
from . import wine_lists, wines

__all__ = ["wine_lists", "wines"]
