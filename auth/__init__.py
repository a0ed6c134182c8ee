"""auth/ -- Authentication and authorization package for AuthGate.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config for type hints. Settings objects are handed in by the caller.
api/ imports from auth/, not the other way around.
"""
