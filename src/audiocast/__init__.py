"""Audiocast service.

Turns a principal's audio track into a static-image video and publishes it
to YouTube. The HTTP layer stays thin; the work happens in
:mod:`src.audiocast.pipeline.upload_pipeline`.
"""
