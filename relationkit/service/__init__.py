from relationkit.service.repo import RepoService

__all__ = ["RepoService"]
