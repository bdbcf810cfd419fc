"""Write path (IngestionPipeline) and read path (StatsQuery)."""
from pingcount.ingest.pipeline import IngestionPipeline
from pingcount.ingest.query import (
    RETENTION_OFFSETS,
    DayCount,
    SeriesPoint,
    StatsQuery,
    StatsReport,
)

__all__ = [
    "RETENTION_OFFSETS",
    "DayCount",
    "IngestionPipeline",
    "SeriesPoint",
    "StatsQuery",
    "StatsReport",
]
