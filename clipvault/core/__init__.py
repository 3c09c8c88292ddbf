"""
Core business logic for video ingestion.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
Snowflake or any infrastructure concerns. Collaborators are injected, so
the upload pipeline can be tested entirely with in-memory doubles.
"""
