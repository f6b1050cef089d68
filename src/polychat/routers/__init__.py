"""FastAPI routers exposing the chat engine over HTTP."""
