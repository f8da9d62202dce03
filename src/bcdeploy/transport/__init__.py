"""Publish transports: development endpoint over HTTP and server session."""
