"""Adaptive media delivery backend.

Modules:
    - core: Configuration, database, Redis, Celery, storage and signing
    - modules.media: Media asset records, roles and access grants
    - modules.transcoding: Rendition ladder planning and transcode jobs
    - modules.access: Media access guard
    - modules.delivery: Signed URL resolution and the URL cache
    - modules.playback: Adaptive rendition selection during playback
"""

__version__ = "0.1.0"
