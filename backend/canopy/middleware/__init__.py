# Middleware package init
"""
Canopy Backend - Middleware Package
=====================================

Middleware Chain (request direction):
    Request → [Request ID] → [Access Log] → [GZip] → [CORS] → Route Handler

    Request ID runs first so the access log line and every error body carry
    the same correlation id.
"""
