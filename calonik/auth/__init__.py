"""
Identity resolution for the calonik API.

Design goals:
- One authentication outcome per request, from an ordered list of strategies.
- A higher-priority credential that fails never falls back to a weaker one.
- Session identity (who the client is for storage purposes) is resolved
  separately from authentication, from client-held signed storage.
"""
