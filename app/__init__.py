# app/__init__.py
"""
AI image detector backend.

Validates uploaded images, publishes them at a public URL and asks the
Winston AI detector for a verdict, always answering with the same envelope.
"""
