"""auth/ -- Authentication and authorization package for the back office.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/ (dependencies.py is the one FastAPI seam).
api/ and main.py import from auth/, not the other way around.
"""
