"""Request telemetry for the demo service.

Structured JSON logging (``logging``), a Prometheus registry (``metrics``),
OpenTelemetry tracing (``tracing``) and the ASGI middleware tying them to
every HTTP request (``middleware``).
"""
