"""HTTP adapter - FastAPI application over the registration domain."""
