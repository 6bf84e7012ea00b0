"""Pydantic schemas for definitions and job payloads."""
