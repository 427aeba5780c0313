"""DMN decision catalog (descriptive)."""

from atti_backend.decisions.catalog import default_catalog, load_catalog

__all__ = ["default_catalog", "load_catalog"]
