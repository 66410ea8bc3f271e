"""Authentication module.

Verifies bearer tokens issued by the identity collaborator and derives the
caller's user id. Token issuance itself lives outside this service.

Services:
    - JWTVerifier: HS256 (configurable) JWT verification.
"""
