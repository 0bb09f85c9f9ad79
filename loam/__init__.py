"""Loam - OpenAPI-first operation pipeline for FastAPI/Starlette services.

A service is declared as a set of operations. Each operation is a method, a
path, a list of parameter declarations and a typed handler; the framework
serves requests for it and describes it in an OpenAPI 3.0 document at the
same time.

Architecture Overview:
- **rest**: The operation pipeline (paths, parameters, handlers, interceptors,
  error mapping, the Api application)
- **core**: Cross-cutting concerns (configuration, logging, tracing,
  correlation IDs, sanitizing)
- **health**: Readiness and liveness monitors
- **server**: Running an Api under uvicorn
"""
