"""Arqia relay — FastAPI REST API layer.

This package contains the FastAPI application and its Pydantic request
models.  It exposes the redesign core over HTTP so that inference
credentials never leave the server.

Modules
-------
main
    FastAPI application factory, route handlers, and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
"""
