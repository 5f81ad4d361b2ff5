"""Error classes for Taxatree."""


class TaxatreeError(Exception):
    """Base class for Taxatree exceptions."""
    pass


class RenderError(TaxatreeError):
    """Raised when a forest produces nothing drawable or a handle is stale."""
    pass


class ExportError(TaxatreeError):
    """Raised when an export cannot be encoded or stays over its byte budget."""
    pass
