from .page_model import FilterDeleteResult, FilterPreview, Page, UpsertResult

__all__ = [
    "Page",
    "UpsertResult",
    "FilterPreview",
    "FilterDeleteResult",
]
