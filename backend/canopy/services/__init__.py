# Services package init
"""
Canopy Backend - Services Layer
=================================

What:  Business logic between the routes (HTTP) and the database.
How:   Services are stateless module singletons; each call receives the
       request's AsyncSession and the authenticated Actor.

Service Inventory:
    - SubjectStore:      versioned subject documents, compare-and-swap writes
    - ProjectDirectory:  read-only project lookup and membership check
    - HistoryService:    load → authorize → ledger op → size check → write
    - SubjectService:    subject create / read / update / delete
"""
