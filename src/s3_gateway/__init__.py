"""
Read-only HTTP gateway in front of an S3 bucket.

GET and HEAD requests are translated into S3 calls and the object bodies are
streamed back to the client.
"""

__version__ = "3.0.0"
