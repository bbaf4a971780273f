"""
relation_pipeline - queue-driven document → sentence → relation pipeline

Roles (one worker process each):
- trigger: heartbeat, enqueues a discovery request (one-shot, scheduled)
- query:   discovers new documents, fans out getDocument requests
- parser:  splits a document into sentences, fans out score requests
- scoring: scores sentences and persists entities/relations

Queues are Redis-backed with visibility timeouts; storage is PostgreSQL.
"""

__version__ = "0.3.0"
