"""Application modules.

- upload: Upload lifecycle records, session creation, tusd hooks
- job: Background job queue
- transcoding: HLS transcoding worker
- callback: Completion webhooks and retries
"""
