"""studiogen -- streaming multi-provider code generation pipeline.

Public API
----------
Pipeline::

    GenerationService, GenerationJob, GenerationOutcome, GenerationCallbacks,

Project state::

    ProjectReconciler, ProjectState,

Models::

    GenerationRequest, GenerationResult, ProjectFile, Attachment,
    ProviderId, GenerationMode, ChatMessage,

The FastAPI proxy app lives in ``studiogen.main`` and is not imported here.
"""

from studiogen.models import (
    Attachment,
    ChatMessage,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    ProjectFile,
    ProviderId,
)
from studiogen.services.generation_service import (
    GenerationJob,
    GenerationOutcome,
    GenerationService,
)
from studiogen.services.reconciler import ProjectReconciler, ProjectState
from studiogen.services.stream_ingest import GenerationCallbacks

__all__ = [
    "Attachment",
    "ChatMessage",
    "GenerationCallbacks",
    "GenerationJob",
    "GenerationMode",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationResult",
    "GenerationService",
    "ProjectFile",
    "ProjectReconciler",
    "ProjectState",
    "ProviderId",
]
