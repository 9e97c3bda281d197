"""
FastAPI RESTful API for the Bookstore Inventory Management System.

This module provides a REST API for:
- Book inventory CRUD, including partial updates
- User registration and login
- Bearer token authentication
"""
