"""FastAPI middleware."""
