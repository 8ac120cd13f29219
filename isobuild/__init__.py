"""Build verified Windows installation ISOs from the UUP dump catalog."""

from .catalog import CatalogClient
from .config import Settings, TargetTable
from .pipeline import IsoPipeline, PipelineContext, Stage

__all__ = ["CatalogClient", "Settings", "TargetTable", "IsoPipeline", "PipelineContext", "Stage"]
