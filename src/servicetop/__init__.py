"""Servicetop: per-tenant webtop workspace provisioning."""
