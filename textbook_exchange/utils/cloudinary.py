import asyncio
from typing import Callable, Optional

import cloudinary.uploader
from fastapi import Depends

from textbook_exchange.config import Settings, get_settings


class ImageStorage:
    """Listing image uploads to Cloudinary, configured per instance rather than globally"""

    def __init__(self, settings: Settings, uploader: Optional[Callable[..., dict]] = None):
        self.settings = settings
        self.uploader = uploader or cloudinary.uploader.upload

    @property
    def base_url(self) -> str:
        return f"https://res.cloudinary.com/{self.settings.cloudinary_cloud_name}/image/upload"

    def get_optimized_image_url(self, public_id: str) -> str:
        if public_id.startswith("http"):
            return public_id

        # Construct the URL with transformations
        transformations = "w_400,c_scale,f_auto,q_auto"
        return f"{self.base_url}/{transformations}/{public_id}"

    async def upload(self, file_contents: bytes) -> dict:
        """
        Runs the synchronous Cloudinary upload function in a separate thread
        to avoid blocking the main asyncio event loop.
        """
        result = await asyncio.to_thread(
            self.uploader,
            file_contents,
            folder=self.settings.cloudinary_folder,
            cloud_name=self.settings.cloudinary_cloud_name,
            api_key=self.settings.cloudinary_api_key,
            api_secret=self.settings.cloudinary_api_secret,
        )
        public_id = result["public_id"]
        return {
            "public_id": public_id,
            "url": self.get_optimized_image_url(public_id),
        }


def get_image_storage(settings: Settings = Depends(get_settings)) -> ImageStorage:
    return ImageStorage(settings)
