"""Learned factor weights: feature extraction and the regressor-driven optimizer."""
