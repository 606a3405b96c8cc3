"""Shared configuration, logging, caching and HTTP utilities."""
