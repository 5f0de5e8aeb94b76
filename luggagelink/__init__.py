"""
Backend package for the LuggageLink marketplace.

This package provides a FastAPI application that matches travelers who have
spare luggage capacity with senders who need packages carried, backed by an
in-memory store for development and a SQLAlchemy store for Postgres.
"""
