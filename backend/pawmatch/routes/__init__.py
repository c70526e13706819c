# Routes package init
"""
PawMatch Backend — API Routes Package
=======================================

Route Inventory:
    - conversations.py:          /api/conversations            (adopters, devices)
    - shelter_conversations.py:  /api/shelter/conversations    (shelters)
    - health.py:                 GET /health

Routes are thin: they resolve the caller, pass raw values to
ConversationService and pick the status code. Business rules live in
services/.
"""
