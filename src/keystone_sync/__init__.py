"""Declarative reconciliation of OpenStack identity objects through the openstack client."""

__version__ = "0.1.0"
