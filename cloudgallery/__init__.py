# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
# CloudGallery - Nextcloud Photo Gallery
"""
CloudGallery browses photos and videos stored on a Nextcloud server, backed
by a metadata cache that is built incrementally in small resumable batches.
"""

__version__ = "1.0.0"
__author__ = "CloudGallery"
