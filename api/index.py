"""
Vercel serverless entry point: exposes the FastAPI app from agentbuilder.main.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agentbuilder.main import app  # noqa: E402

__all__ = ["app"]
