# Routes package init
"""
Canopy Backend - API Routes Package
=====================================

Route Inventory:
    - subjects.py:  POST /api/subjects, GET/PUT/DELETE /api/subjects/{id}
    - history.py:   /api/subjects/{id}/history (add, list, stats, edit, delete)
    - health.py:    GET /health

Routes stay thin: extract the request data, call a service, set status and
headers (ETag). Business rules live in the services and the ledger.
"""
