"""Back-to-TOC anchor link insertion for rendered HTML documents."""

from .core import (
    AnchorLinksGenerationResult,
    AnchorLinksGenerator,
    AnchorLinksOptions,
    AnchorLinkTemplate,
    CatalogTranslator,
    Heading,
    ProcessedSection,
)
from .version import __version__

__all__ = [
    "AnchorLinkTemplate",
    "AnchorLinksGenerationResult",
    "AnchorLinksGenerator",
    "AnchorLinksOptions",
    "CatalogTranslator",
    "Heading",
    "ProcessedSection",
    "__version__",
]
