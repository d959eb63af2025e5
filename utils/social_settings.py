"""
Per-platform scopes and media limits loaded from config/social_media.yml
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict

DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent / "config" / "social_media.yml"


class PlatformSettings(BaseModel):
    """Scopes and media limits for one platform"""
    model_config = ConfigDict(frozen=True)

    default_scopes: List[str] = []
    max_image_size: int = 5 * 1024 * 1024
    max_gif_size: Optional[int] = None
    max_video_size: int = 100 * 1024 * 1024
    max_media_count: int = 1


class SocialMediaSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    facebook: PlatformSettings = PlatformSettings()
    instagram: PlatformSettings = PlatformSettings()
    twitter: PlatformSettings = PlatformSettings()
    tiktok: PlatformSettings = PlatformSettings()

    def for_provider(self, provider) -> PlatformSettings:
        return getattr(self, str(getattr(provider, "value", provider)).lower())


def load_social_media_settings(path: Optional[Path] = None) -> SocialMediaSettings:
    """
    Load social media settings with environment variable substitution.
    """
    config_path = Path(path) if path else DEFAULT_SETTINGS_PATH
    if not config_path.exists():
        return SocialMediaSettings()
    text = os.path.expandvars(config_path.read_text())
    data = yaml.safe_load(text) or {}
    return SocialMediaSettings(**data)


@lru_cache()
def get_social_media_settings() -> SocialMediaSettings:
    return load_social_media_settings()
