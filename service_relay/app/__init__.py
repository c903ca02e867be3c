"""
Relay Service package.

Shields a browser client from two upstream dependencies:

- app.main: FastAPI app, routes, and service wiring
- app.caching: time-based RSS cache and cache-backed fetch proxy
- app.adapters: HTTP clients for the RSS source and the Gemini backend
- app.sse: streaming relay (session state machine + SSE framing)
- app.domain: request models, personas, and non-streaming calls
"""
