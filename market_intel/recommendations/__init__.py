"""Portfolio recommendations and per-asset insight reports."""
