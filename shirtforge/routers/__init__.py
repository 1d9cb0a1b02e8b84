from shirtforge.routers import admin, catalog, printify, products, stripe, workflow

__all__ = [
    "admin",
    "catalog",
    "printify",
    "products",
    "stripe",
    "workflow",
]
