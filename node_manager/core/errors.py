from typing import Optional

from fastapi import status

SUCCESS_CODE = 0


class NodeMgrError(Exception):
    """Base error for deploy workflows.

    ``code`` is stable and tells callers what failed without having to walk
    ``__cause__``. ``output`` carries captured tool/ssh output when there is any.
    """

    code: int = 200000
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Node manager error"

    def __init__(self, message: Optional[str] = None, *, output: Optional[str] = None):
        self.message = message or self.default_message
        self.output = output
        super().__init__(self.message)


# kinds

class ValidationError(NodeMgrError):
    code = 201000
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid parameter"


class ConflictError(NodeMgrError):
    code = 202000
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class NotFoundError(NodeMgrError):
    code = 203000
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class PreconditionError(NodeMgrError):
    code = 204000
    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_message = "Precondition failed"


class ExternalToolError(NodeMgrError):
    code = 205000
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "External tool failed"


class UnknownFailure(NodeMgrError):
    code = 206000
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Unknown failure"


# validation

class EmptyTopology(ValidationError):
    code = 201001
    default_message = "Ip config is empty"


class InvalidNodeCount(ValidationError):
    code = 201002
    default_message = "Node count must be between 1 and 199"


class AgencyNameRequired(ValidationError):
    code = 201003
    default_message = "Agency name is required for a new host"


class InvalidIp(ValidationError):
    code = 201004
    default_message = "Invalid IPv4 address"


class InvalidTag(ValidationError):
    code = 201005
    default_message = "Image tag id does not exist"


# conflict

class ChainNameExists(ConflictError):
    code = 202001
    default_message = "Chain name already exists"


class HostAgencyConflict(ConflictError):
    code = 202002
    default_message = "A host can only belong to one agency"


class SameVersionError(ConflictError):
    code = 202003
    default_message = "Chain already runs this version"


class InvalidStatusTransition(ConflictError):
    code = 202004
    default_message = "Invalid status transition"


# not found

class ChainNotFound(NotFoundError):
    code = 203001
    default_message = "Chain not found"


class NodeNotFound(NotFoundError):
    code = 203002
    default_message = "Node not found"


class HostNotFound(NotFoundError):
    code = 203003
    default_message = "Host not found"


# precondition

class NodeStillRunning(PreconditionError):
    code = 204001
    default_message = "Node is running, stop it first"


# external tools

class HostUnreachable(ExternalToolError):
    code = 205001
    default_message = "Cannot connect to host over SSH"


class BuildChainFailed(ExternalToolError):
    code = 205002
    default_message = "Chain bootstrap tool failed"


class RemoteCommandFailed(ExternalToolError):
    code = 205003
    default_message = "Remote command failed"


# workflow failures

class DeployFailed(UnknownFailure):
    code = 206001
    default_message = "Deploy chain failed"


class AddNodeFailed(UnknownFailure):
    code = 206002
    default_message = "Add node failed"


class ConfigUpdateFailed(UnknownFailure):
    code = 206003
    default_message = "Update related node config failed"


class NodeDirDeleteFailed(UnknownFailure):
    code = 206004
    default_message = "Move node directory failed"
