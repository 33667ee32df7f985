"""Pydantic schemas for the SMB-basal service."""
