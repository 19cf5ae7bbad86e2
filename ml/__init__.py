"""
Navigation prediction ML engine.

Modules:
- features: fixed-order navigation feature vector and categorical encoders
- tree: Gini-impurity decision tree construction and traversal
- models: model-kind strategies, factory and trainer
- evaluation: held-out evaluation metrics
- registry: versioned model registry with an atomically swapped active pointer
- exceptions: error taxonomy shared by training and serving
"""
