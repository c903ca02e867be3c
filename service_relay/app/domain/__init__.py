"""
Domain helpers for the Relay Service: wire models, system instructions,
and the non-streaming summarize/chat calls.
"""
