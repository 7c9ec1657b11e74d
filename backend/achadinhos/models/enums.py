"""Enumerations shared by models, strategies and services."""

import enum


class Marketplace(str, enum.Enum):
    """Supported e-commerce platforms."""

    MERCADOLIVRE = "MERCADOLIVRE"
    SHOPEE = "SHOPEE"
    AMAZON = "AMAZON"
    ALIEXPRESS = "ALIEXPRESS"


class ExecutionStatus(str, enum.Enum):
    """Lifecycle of one scraper run: PENDING -> RUNNING -> SUCCESS | FAILED."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED)


class ProductStatus(str, enum.Enum):
    """Curation status, advanced by the approval workflow."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT = "SENT"


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    USER = "USER"
