import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import UploadFile
from app.config import settings
from app.errors import StoreError, ValidationError

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


class ImageService:
    def __init__(self):
        cloudinary.config(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
        )

    def upload_image(self, file: UploadFile, conversation_id: str) -> str:
        if not settings.is_cloudinary_configured:
            raise StoreError("Image storage is not configured")
        if file.content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"Unsupported image type {file.content_type}")
        try:
            result = cloudinary.uploader.upload(
                file.file,
                folder=f"chatdesk/conversations/{conversation_id}",
                transformation=[
                    {"width": 1600, "height": 1600, "crop": "limit", "quality": "auto"},
                    {"fetch_format": "auto"},
                ],
            )
        except cloudinary.exceptions.Error as e:
            raise StoreError(f"Image upload failed: {e}") from e
        return result["secure_url"]
