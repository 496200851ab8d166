import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "textbook_exchange"

    jwt_secret_key: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 1 day

    idp_userinfo_url: Optional[str] = None
    idp_timeout_seconds: float = 10.0

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "TextbookListings"

    cors_origins: List[str] = ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            mongo_uri=os.getenv("MONGO_URI", defaults.mongo_uri),
            mongo_db=os.getenv("MONGO_DB", defaults.mongo_db),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", defaults.jwt_algorithm),
            access_token_expire_minutes=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", defaults.access_token_expire_minutes)
            ),
            idp_userinfo_url=os.getenv("IDP_USERINFO_URL"),
            idp_timeout_seconds=float(os.getenv("IDP_TIMEOUT_SECONDS", defaults.idp_timeout_seconds)),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", defaults.cloudinary_folder),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else defaults.cors_origins,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
