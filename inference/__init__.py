"""
Navigation prediction serving: telemetry stores, feature extraction,
prediction service with cache and fallback, and the FastAPI app.
"""
