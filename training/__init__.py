"""
Navigation model training: dataset building, lifecycle management,
experiment tracking and the training / scheduling entry points.
"""
