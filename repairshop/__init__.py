"""Repair shop backend: tenant isolation enforcement (shop_id) for a multi-tenant database."""
