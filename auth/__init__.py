"""auth/ -- Identity and access control for FacilityOps.

Layer rule: auth/ imports only core/ (configuration) plus stdlib and
third-party libraries. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
