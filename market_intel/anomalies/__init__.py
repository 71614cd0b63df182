"""Cross-sectional anomaly detection over a scanned universe."""
