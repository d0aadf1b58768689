"""HTTP layer: routers, request/response schemas and FastAPI dependencies."""
