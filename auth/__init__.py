"""auth/ -- Authentication core: passwords, access and refresh tokens, identity linking.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
The surrounding service layer imports from auth/, never the other way around.
"""
