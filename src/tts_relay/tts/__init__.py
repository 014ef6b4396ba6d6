"""
Relay Pipeline Components.

This package provides the building blocks SpeechProxy composes:
    - keys.py: Cache key derivation
    - blobstore.py: Blob store interface and UploadResult
    - storage.py: Local disk blob store with signed URLs
    - supabase.py: Supabase Storage blob store
    - generator.py: Speech generation backend (OpenAI)
    - fork.py: Stream forker (one source, two branches)
    - jobs.py: Background job registry
"""
