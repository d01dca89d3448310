"""app.integrations: External service gateway modules.

All outbound calls to the production-planning system must go through a
gateway in this package, never via bare `requests` calls in services or
blueprints. Gateways own timeouts, retries with backoff and the mapping of
upstream failures onto ``app.core.exceptions``.

Current gateways:
  classification_gateway: launch (phase, sub_code) classification,
                           table mirror or planning-system REST API
"""
