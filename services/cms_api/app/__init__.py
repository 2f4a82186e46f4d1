"""Signage CMS API."""
