"""CRM integration and reconciliation layer."""
