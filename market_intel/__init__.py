"""
Market intelligence engine.

Regime classification, adaptive score adjustment, anomaly detection and
portfolio recommendations for a quantitative asset scanner.
"""

__version__ = "0.1.0"
