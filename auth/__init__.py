"""auth/ -- Authentication and authorization package for Etheryte.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or market/.
api/ and market/ import from auth/, not the other way around.
"""
