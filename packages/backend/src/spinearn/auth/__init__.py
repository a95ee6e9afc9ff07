"""Authentication and authorization.

Learn: Sign-in happens at the hosted auth provider. The browser sends the
provider's JWT as a Bearer token (or ?token= on WebSockets); we verify the
signature with the shared secret and read the user id from "sub" and the
role from "role". Admin routes additionally require role == "admin".
"""
