"""Authentication and authorization.

Learn: Users register with a name and password, then exchange those
credentials for a JWT access/refresh pair at POST /sessions. The access
token rides in the Authorization header; get_current_user turns it into
a CurrentIdentity that services use for ownership checks.
"""
