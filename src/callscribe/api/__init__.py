"""FastAPI routers for callscribe."""
