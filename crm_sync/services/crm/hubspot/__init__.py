"""HubSpot field catalogue, token refresh and contacts client."""
