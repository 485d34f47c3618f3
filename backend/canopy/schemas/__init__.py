# Schemas package init
"""
Canopy Backend - API Schemas
==============================

What:  Pydantic request/response models, kept apart from the ORM models so
       the API contract (camelCase) can differ from the table layout.

Module Inventory:
    - common.py:   CamelModel base, ErrorResponse, HealthResponse
    - history.py:  history entry bodies, mutation responses, stats
    - subject.py:  subject create/update bodies and the subject response
"""
