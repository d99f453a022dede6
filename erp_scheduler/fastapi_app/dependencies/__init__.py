"""
FastAPI Dependencies Package.

Contains dependency injection functions for:
- Database sessions (read endpoints)
- The scheduler and notification queue services owned by the app
"""
