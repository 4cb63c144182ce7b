"""HTTP surface for modelquery (FastAPI)."""
