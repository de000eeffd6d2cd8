"""
pytest suite for the Casa Piñón payments backend.

Test categories (markers):
- unit: resolver, gate and services against in-memory SQLite with fake senders/gateways
- api: HTTP routes through the ASGI app
- integration: concurrent notification dispatch across separate sessions
"""
