"""
Exception hierarchy for ICP mining.

Internal layers (clients, repositories, tracker) raise these; the public
operations (page processor, person enrichment, orchestrator) catch them and
return structured results instead.
"""


class IcpMiningError(Exception):
    """Base class for all ICP mining errors."""


# Not-found: fatal to the current invocation

class NotFoundError(IcpMiningError):
    pass


class MiningJobNotFoundError(NotFoundError):
    def __init__(self, job_id):
        super().__init__(f"icp_mining {job_id} not found")
        self.job_id = job_id


class RoleQueryNotFoundError(NotFoundError):
    def __init__(self, role_query_id):
        super().__init__(f"Role query {role_query_id} not found")
        self.role_query_id = role_query_id


class SiteNotFoundError(NotFoundError):
    def __init__(self, site_id):
        super().__init__(f"Site {site_id} not found")
        self.site_id = site_id


# Page-level: fatal to the job's current run

class PageFetchError(IcpMiningError):
    def __init__(self, page: int, reason: str):
        super().__init__(f"Page {page} fetch failed: {reason}")
        self.page = page
        self.reason = reason


# Collaborator answered, but with a semantic failure (never retried)

class CollaboratorError(IcpMiningError):
    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class FinderAPIError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__("finder", message)


class EmailGenerationError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__("email_generation", message)


class EmailValidationError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__("email_validation", message)


# State machine

class InvalidStatusTransitionError(IcpMiningError):
    def __init__(self, job_id, from_status: str, to_status: str):
        super().__init__(f"icp_mining {job_id}: cannot move from '{from_status}' to '{to_status}'")
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
