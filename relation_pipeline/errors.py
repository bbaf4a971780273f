"""
Pipeline exception hierarchy

Role handlers map these onto outcomes:
- MalformedMessageError: data can never become processable → message dropped
- everything else: transient → message left for redelivery
- QueueInitError: raised from Runner.start(), fatal to the worker process
"""


class PipelineError(Exception):
    """Base class for pipeline errors"""


class QueueInitError(PipelineError):
    """A queue could not be initialized"""


class MalformedMessageError(PipelineError):
    """Envelope is missing required fields or carries unusable values"""


class AnalysisFormatError(MalformedMessageError):
    """Analysis service rejected the request payload as malformed"""


class AnalysisServiceError(PipelineError):
    """Analysis service was unreachable or returned an error"""


class DocumentNotAccessibleError(AnalysisServiceError):
    """Analysis service reports the document cannot be retrieved"""

    def __init__(self, source_id: int, doc_id: str, status_code: int = None):
        self.source_id = source_id
        self.doc_id = doc_id
        self.status_code = status_code
        super().__init__(
            f"Document {doc_id} from source {source_id} is not accessible"
            + (f" (HTTP {status_code})" if status_code else "")
        )
