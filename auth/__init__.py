"""auth/ -- Authentication and authorization package for AuthStarter.

Layer rule: auth/ imports only core/, mailer/, stdlib and third-party
libraries. It does NOT import from api/. api/ imports from auth/, not the
other way around.
"""
