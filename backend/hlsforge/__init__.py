"""HLSForge backend application.

Tracks video uploads from session creation through resumable upload, HLS
transcoding and object storage publishing to webhook notification.

Modules:
    - core: Configuration, database, logging, storage, Celery setup
    - modules.upload: Upload records, sessions and the tusd hook gate
    - modules.job: Durable transcode job queue
    - modules.transcoding: ffmpeg HLS packaging and the transcoding worker
    - modules.callback: Webhook delivery and the retry sweep
"""

__version__ = "0.1.0"
