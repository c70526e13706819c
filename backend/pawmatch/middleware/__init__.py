# Middleware package init
"""
PawMatch Backend — Middleware Package
=======================================

Middleware Chain (order matters!):
    Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Rate Limit first: rejects abusive callers before any database work
    2. Request ID: correlation id for logs and error bodies
    3. Logging: one access line per request, with the request id
    4. CORS: FastAPI's CORSMiddleware (handles preflight)
"""
