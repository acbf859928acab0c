from .university import IdentityLookup, UniversityDirectoryClient, VisitorIdentity

__all__ = ["IdentityLookup", "UniversityDirectoryClient", "VisitorIdentity"]
