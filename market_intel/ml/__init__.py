"""
Learning primitives implemented in pure Python.

Modules
-------
stats      : mean / population std / z-scores / correlation / EMA /
             annualised volatility / drawdown helpers.
tree       : DecisionTree: variance-minimising binary splitter (weak learner).
ensemble   : EnsembleClassifier (round-and-clamp voting) and EnsembleRegressor
             (mean output), both bootstrap-aggregated DecisionTree forests.
kmeans     : KMeans: k-means++ seeded clustering (cluster anomaly detector).
validation : regression metrics, seeded train/test split, k-fold indices.
errors     : InvalidModelStateError.
"""
