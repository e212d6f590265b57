# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
CloudGallery web API.
Exposes the cache build actions, the gallery index and an image proxy.
"""

import logging
import os
import random
from typing import Any, Optional

from flask import Flask, Response, jsonify, request

from ..cache_manager import CacheManager, file_extension
from ..config import GalleryConfig
from ..gallery import PROXY_CONTENT_TYPES, ImageFileCache, prune_cache

logger = logging.getLogger(__name__)

CACHE_ACTIONS = ['init', 'process', 'status', 'cancel']

# Chance that a gallery read also prunes old proxied images
PRUNE_PROBABILITY = 0.01


def create_app(
    config: GalleryConfig,
    cache_manager: Optional[CacheManager] = None,
    image_cache: Optional[ImageFileCache] = None
) -> Flask:
    """
    Create the Flask application.

    Args:
        config: Gallery configuration.
        cache_manager: CacheManager instance. Built from config if not given.
        image_cache: Proxied image store. Defaults to <cache>/images.

    Returns:
        Flask application.
    """
    app = Flask(__name__)

    if cache_manager is None:
        cache_manager = CacheManager(config)
    if image_cache is None:
        image_cache = ImageFileCache(
            os.path.join(config.cache.directory, "images"),
            config.cache.image_cache_hours * 3600
        )

    # Store references
    app.gallery_config = config
    app.cache_manager = cache_manager
    app.image_cache = image_cache

    def _maybe_prune() -> None:
        if random.random() < PRUNE_PROBABILITY:
            prune_cache(
                str(app.image_cache.directory),
                app.gallery_config.cache.prune_days * 24 * 3600
            )

    # Routes

    @app.route('/api/cache')
    def api_cache():
        """Run one cache build action."""
        action = request.args.get('action')
        if not action:
            return jsonify({"status": "error", "message": "Action parameter is missing."}), 400

        if action not in CACHE_ACTIONS:
            return jsonify({"status": "error", "message": "Invalid action."}), 400

        try:
            if action == 'init':
                result = app.cache_manager.init_cache()
            elif action == 'process':
                offset = request.args.get('offset', 0, type=int)
                result = app.cache_manager.process_batch(offset)
            elif action == 'status':
                result = app.cache_manager.get_status().to_dict()
            else:
                result = app.cache_manager.cancel()
            return jsonify(result)

        except Exception as e:
            logger.error(f"Cache action '{action}' failed: {e}")
            body = {"status": "error", "message": str(e)}
            if action == 'init':
                body["total"] = 0
            return jsonify(body), 500

    @app.route('/api/photos')
    def api_photos():
        """Gallery index with the current cache status."""
        _maybe_prune()
        photos = app.cache_manager.get_photos()
        return jsonify({
            "photos": [photo.to_dict() for photo in photos],
            "cache": app.cache_manager.get_status().to_dict(),
        })

    @app.route('/api/photos/meta')
    def api_photo_meta():
        """Cached metadata for one photo."""
        path = request.args.get('path')
        if not path:
            return jsonify({"error": "Missing path parameter"}), 400

        photo = app.cache_manager.find_photo(path)
        if photo is None:
            return jsonify({"error": "Photo not found in metadata cache."}), 404
        return jsonify(photo.to_dict())

    @app.route('/api/photos/description', methods=['POST'])
    def api_photo_description():
        """Write a new EXIF description back to the server."""
        data = request.get_json(silent=True) or {}
        path = data.get('path')
        description = data.get('description')
        if not path or description is None:
            return jsonify({"error": "path and description are required"}), 400

        if app.cache_manager.update_description(path, description):
            return jsonify({
                "success": True,
                "message": "Description updated. The cache will be updated on the next full refresh."
            })
        return jsonify({"error": "Error saving description."}), 500

    @app.route('/image')
    def image_proxy():
        """Serve a remote image through the local file cache."""
        path = request.args.get('path')
        if not path:
            return Response("Missing path parameter.", status=400)

        content_type = PROXY_CONTENT_TYPES.get(file_extension(path))
        if content_type is None:
            return Response(status=415)

        content = app.image_cache.fetch(path, app.cache_manager.client.get_file)
        if not content:
            return Response("File not found.", status=404)

        return Response(content, mimetype=content_type)

    return app


def run_server(config: GalleryConfig, cache_manager: Any = None) -> None:
    """
    Run the web server (blocking).

    Args:
        config: Gallery configuration.
        cache_manager: CacheManager instance.
    """
    if not config.web.enabled:
        logger.info("Web interface disabled")
        return

    app = create_app(config, cache_manager)

    logger.info(f"Starting web server on {config.web.host}:{config.web.port}")

    # Disable Flask's default logging for production
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    app.run(
        host=config.web.host,
        port=config.web.port,
        debug=False,
        threaded=True
    )
