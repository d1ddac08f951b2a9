"""JSON API: FastAPI routers for rent revisions, billing, bills and payments."""
