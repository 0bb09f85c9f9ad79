"""Core infrastructure package shared by every Loam service.

- **config**: Environment-driven settings built on pydantic-settings
- **context**: Correlation ID storage for the current request
- **error_context**: Sensitive data sanitization for safe error logging
- **logging**: Structured logging with Loguru
- **observability**: Distributed tracing with OpenTelemetry
"""
