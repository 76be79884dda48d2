from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "SiteGuard Video Analysis API"
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = "sqlite:///./siteguard.db"
    upload_dir: str = "uploads"
    thumbnail_dir: str = "uploads/thumbnails"
    log_level: str = "info"

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-pro"
    gemini_poll_interval_sec: float = 5.0
    gemini_max_poll_attempts: int = 36

    max_video_bytes: int = 100 * 1024 * 1024
    max_video_duration_sec: float = 2 * 60 * 60

    metadata_timeout_sec: float = 5.0
    seek_timeout_sec: float = 7.0
    jpeg_quality: int = 80

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"

    @property
    def gemini_configured(self) -> bool:
        return bool(self.gemini_api_key) and self.gemini_api_key != "YOUR_GEMINI_API_KEY"


settings = Settings()
