"""Application modules.

- media: Asset records and access tables
- transcoding: Rendition ladder and transcode jobs
- access: Privileged-role and grant checks
- delivery: Secure URL resolution and caching
- playback: Quality switching controller
"""
