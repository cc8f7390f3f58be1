"""
Automatic background-people removal service package.

Exposes the detection adapters, foreground scoring, mask generation,
inpainting fallback chain, and the retrying pipeline that sequences them,
plus the FastAPI application serving it.
"""
