from learnportal.models.principal import Principal, PrincipalType

__all__ = [
    "Principal",
    "PrincipalType",
]
