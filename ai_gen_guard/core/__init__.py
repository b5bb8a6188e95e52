"""
Core modules for AI Gen Guard.

This package contains the generation pipeline: moderation, result caching,
quota enforcement, the background job queue and the orchestrator.
"""
