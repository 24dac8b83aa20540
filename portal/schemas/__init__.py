"""Pydantic schemas for records and view state"""
