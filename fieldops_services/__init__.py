"""Service layer: the back-office command surface over modules and kernel."""

from fieldops_services.back_office import BackOfficeEngine, create_tenant

__all__ = ["BackOfficeEngine", "create_tenant"]
