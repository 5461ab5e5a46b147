"""Init-system unit configuration of the working tree."""

from isoforge.units.graph import ServiceGraphChanges, ServiceLink, edit

__all__ = ["ServiceGraphChanges", "ServiceLink", "edit"]
