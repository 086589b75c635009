# Routes package init
"""
Tourkit — API Routes Package
==============================

Route Inventory:
    - uploads.py:  POST /api/uploads           (store a photo or document)
    - routing.py:  POST /api/geocode           (resolve stop addresses)
                   POST /api/routes/sequence   (order stops for a tour)
    - health.py:   GET  /health                (service health check)

Routes stay thin: parse the request, call a service, shape the response.
"""
