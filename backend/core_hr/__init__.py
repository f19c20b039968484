"""Core HR module: Organization, Department and Employee models."""

from backend.core_hr.models import Department, Employee, Organization

__all__ = ["Organization", "Department", "Employee"]
