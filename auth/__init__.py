"""auth/ -- Token resolution, privilege gating, and password login for authgate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
