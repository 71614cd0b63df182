"""Market regime classification: feature extraction and the ensemble predictor."""
