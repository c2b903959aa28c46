import logging
import os
import uuid

from flask import current_app, url_for
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'webp', 'gif')


def save_image(file_storage, folder: str) -> str:
    """Store an uploaded image under static/uploads/<folder>/.

    Returns the key (path relative to the static folder) to persist on
    the row; ``public_url`` turns it back into a URL.
    """
    filename = secure_filename(file_storage.filename or '')
    ext = (filename.rsplit('.', 1)[-1] if '.' in filename else '').lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValueError(
            'Unsupported image type (jpg/jpeg/png/webp/gif only)')

    rel_dir = os.path.join('uploads', folder)
    abs_dir = os.path.join(current_app.static_folder, rel_dir)
    os.makedirs(abs_dir, exist_ok=True)

    new_name = f"{uuid.uuid4().hex}.{ext}"
    file_storage.save(os.path.join(abs_dir, new_name))
    key = f"{rel_dir}/{new_name}".replace('\\', '/')
    logger.info("Stored upload %s", key)
    return key


def delete_image(key: str) -> None:
    # Only files we uploaded ourselves are ever removed.
    if not key or not key.startswith('uploads/'):
        return
    abs_path = os.path.join(current_app.static_folder, key)
    try:
        if os.path.isfile(abs_path):
            os.remove(abs_path)
    except OSError:
        logger.warning("Could not remove old upload %s", key, exc_info=True)


def public_url(key):
    if not key:
        return None
    return url_for('static', filename=key)
