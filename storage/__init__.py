"""storage/ -- Asset classification, object-storage access and avatar ownership.

Layer rule: storage/ imports from core/ (and auth.models for the User shape in
avatars.py). It does NOT import from api/ or mail/.
"""
