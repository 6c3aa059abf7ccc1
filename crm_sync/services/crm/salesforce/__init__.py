"""Salesforce field catalogue, token refresh and Contact client."""
