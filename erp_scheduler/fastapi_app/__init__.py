"""
FastAPI Application Package

HTTP boundary for the ERP scheduler and notification queue, served at /api/v2/*
"""

__version__ = "1.0.0"
